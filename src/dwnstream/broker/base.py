from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List


@dataclass
class BrokerMessage:
    """One delivery of a published payload to one subscription."""

    id: str
    subscription: str
    data: bytes
    attributes: Dict[str, Any] = field(default_factory=dict)


MessageHandler = Callable[[BrokerMessage], Awaitable[None]]


class BaseBroker(ABC):
    """
    Broker capability contract. Implement drivers for Redis Streams, in-memory, etc.

    Topics are named channels; a subscription is a named resource attached to one
    topic that receives its own copy of every message published after it was
    created. ``create_topic`` and ``create_subscription`` raise
    ``ResourceExistsError`` when the resource is already there.
    """

    @abstractmethod
    async def connect(self) -> None:
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        raise NotImplementedError

    @abstractmethod
    async def topic_exists(self, topic: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def create_topic(self, topic: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def delete_topic(self, topic: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def list_topics(self) -> List[str]:
        raise NotImplementedError

    @abstractmethod
    async def publish(self, topic: str, data: bytes) -> str:
        raise NotImplementedError

    @abstractmethod
    async def subscription_exists(self, subscription: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def create_subscription(self, topic: str, subscription: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def on_message(self, subscription: str, handler: MessageHandler) -> None:
        raise NotImplementedError

    @abstractmethod
    async def remove_listener(self, subscription: str, handler: MessageHandler) -> None:
        raise NotImplementedError

    @abstractmethod
    async def ack(self, message: BrokerMessage) -> None:
        raise NotImplementedError

    @abstractmethod
    async def close_subscription(self, subscription: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def delete_subscription(self, subscription: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def list_subscriptions(self) -> List[str]:
        raise NotImplementedError
