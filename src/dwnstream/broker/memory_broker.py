"""
In-process broker for local development and testing.

Keeps topics and subscriptions in dictionaries and delivers through one
asyncio queue per subscription, so it behaves like a managed broker without
any server: messages published before a subscription exists are not seen by
it, messages published while nobody listens are buffered until a listener
attaches, and unacknowledged deliveries stay pending.
"""

import asyncio
import itertools
import logging
from typing import Dict, List, Optional, Set

from dwnstream.broker.base import BaseBroker, BrokerMessage, MessageHandler
from dwnstream.errors import ResourceExistsError

logger = logging.getLogger(__name__)


class _Subscription:
    def __init__(self, topic: str):
        self.topic = topic
        self.queue: asyncio.Queue = asyncio.Queue()
        self.handlers: List[MessageHandler] = []
        self.pending: Dict[str, BrokerMessage] = {}
        self.task: Optional[asyncio.Task] = None


class InMemoryBroker(BaseBroker):
    def __init__(self):
        self._topics: Dict[str, Set[str]] = {}
        self._subscriptions: Dict[str, _Subscription] = {}
        self._ids = itertools.count(1)
        self._connected = False

    async def connect(self) -> None:
        self._connected = True

    async def close(self) -> None:
        for name in list(self._subscriptions):
            await self.close_subscription(name)
        self._connected = False

    async def topic_exists(self, topic: str) -> bool:
        return topic in self._topics

    async def create_topic(self, topic: str) -> None:
        if topic in self._topics:
            raise ResourceExistsError(topic)
        self._topics[topic] = set()

    async def delete_topic(self, topic: str) -> None:
        for name in list(self._topics.get(topic, ())):
            await self.delete_subscription(name)
        self._topics.pop(topic, None)

    async def list_topics(self) -> List[str]:
        return sorted(self._topics)

    async def publish(self, topic: str, data: bytes) -> str:
        if topic not in self._topics:
            raise LookupError(f"topic '{topic}' not found")
        msg_id = str(next(self._ids))
        for name in self._topics[topic]:
            self._subscriptions[name].queue.put_nowait((msg_id, data))
        return msg_id

    async def subscription_exists(self, subscription: str) -> bool:
        return subscription in self._subscriptions

    async def create_subscription(self, topic: str, subscription: str) -> None:
        if subscription in self._subscriptions:
            raise ResourceExistsError(subscription)
        if topic not in self._topics:
            raise LookupError(f"topic '{topic}' not found")
        self._subscriptions[subscription] = _Subscription(topic)
        self._topics[topic].add(subscription)

    async def delete_subscription(self, subscription: str) -> None:
        await self.close_subscription(subscription)
        sub = self._subscriptions.pop(subscription, None)
        if sub is not None:
            self._topics.get(sub.topic, set()).discard(subscription)

    async def list_subscriptions(self) -> List[str]:
        return sorted(self._subscriptions)

    async def on_message(self, subscription: str, handler: MessageHandler) -> None:
        sub = self._subscriptions.get(subscription)
        if sub is None:
            raise LookupError(f"subscription '{subscription}' not found")
        sub.handlers.append(handler)
        if sub.task is None or sub.task.done():
            sub.task = asyncio.create_task(self._pump(subscription, sub))

    async def remove_listener(self, subscription: str, handler: MessageHandler) -> None:
        sub = self._subscriptions.get(subscription)
        if sub is not None and handler in sub.handlers:
            sub.handlers.remove(handler)

    async def ack(self, message: BrokerMessage) -> None:
        sub = self._subscriptions.get(message.subscription)
        if sub is not None:
            sub.pending.pop(message.id, None)

    async def close_subscription(self, subscription: str) -> None:
        sub = self._subscriptions.get(subscription)
        if sub is None:
            return
        sub.handlers.clear()
        task, sub.task = sub.task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def pending_count(self, subscription: str) -> int:
        sub = self._subscriptions.get(subscription)
        return len(sub.pending) if sub else 0

    async def _pump(self, name: str, sub: _Subscription) -> None:
        while True:
            msg_id, data = await sub.queue.get()
            message = BrokerMessage(id=msg_id, subscription=name, data=data)
            sub.pending[msg_id] = message
            for handler in list(sub.handlers):
                try:
                    await handler(message)
                except Exception as err:
                    logger.exception(
                        f"[InMemoryBroker] handler error subscription={name} id={msg_id}: {err}"
                    )
