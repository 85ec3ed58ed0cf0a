from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict

from dwnstream.schemas import IndexValue

EventListener = Callable[[str, Dict[str, Any], Dict[str, IndexValue]], Any]


class EventSubscription:
    """Handle returned by ``subscribe``; ``close()`` stops delivery to the listener."""

    def __init__(self, id: str, close: Callable[[], Awaitable[None]]):
        self.id = id
        self._close = close

    async def close(self) -> None:
        await self._close()

    def __repr__(self) -> str:
        return f"EventSubscription(id={self.id!r})"


class BaseEventStream(ABC):
    """Event stream contract consumed by the DWN host runtime."""

    @abstractmethod
    async def open(self) -> None:
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        raise NotImplementedError

    @abstractmethod
    async def subscribe(
        self, tenant: str, id: str, listener: EventListener
    ) -> EventSubscription:
        raise NotImplementedError

    @abstractmethod
    async def emit(
        self, tenant: str, event: Dict[str, Any], indexes: Dict[str, IndexValue]
    ) -> None:
        raise NotImplementedError
