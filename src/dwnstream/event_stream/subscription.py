import asyncio
import logging
from enum import Enum
from typing import Callable, Optional

from dwnstream.broker.base import BaseBroker, BrokerMessage
from dwnstream.errors import DecodeError
from dwnstream.event_stream import codec
from dwnstream.event_stream.base import EventListener, EventSubscription
from dwnstream.event_stream.naming import subscription_name, topic_name
from dwnstream.event_stream.provisioner import ResourceProvisioner

logger = logging.getLogger(__name__)


class SubscriptionState(str, Enum):
    UNSUBSCRIBED = "unsubscribed"
    PROVISIONING = "provisioning"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"


class ManagedSubscription:
    """
    Lifecycle of one listener's broker subscription.

    - subscribe() provisions topic + subscription, then wires a broker handler
      that acks, decodes and queues every delivery
    - a dispatcher task drains the queue into the listener; listener errors are
      logged and never reach the broker
    - close() detaches the handler and deletes the subscription; calling it again
      is a no-op
    """

    def __init__(
        self,
        broker: BaseBroker,
        provisioner: ResourceProvisioner,
        tenant: str,
        id: str,
        listener: EventListener,
        on_closed: Optional[Callable[["ManagedSubscription"], None]] = None,
    ):
        self.broker = broker
        self.provisioner = provisioner
        self.tenant = tenant
        self.id = id
        self.listener = listener
        self.on_closed = on_closed

        self.topic = topic_name(tenant)
        self.name = subscription_name(tenant, id)
        self.state = SubscriptionState.UNSUBSCRIBED

        self._queue: asyncio.Queue = asyncio.Queue()
        self._dispatcher: Optional[asyncio.Task] = None
        self._close_lock = asyncio.Lock()

    async def subscribe(self) -> EventSubscription:
        if self.state is not SubscriptionState.UNSUBSCRIBED:
            raise RuntimeError(f"subscription {self.name} is {self.state.value}")

        self.state = SubscriptionState.PROVISIONING
        try:
            await self.provisioner.ensure_topic(self.topic)
            await self.provisioner.ensure_subscription(self.topic, self.name)
        except Exception:
            self.state = SubscriptionState.CLOSED
            raise

        if self.state is not SubscriptionState.PROVISIONING:
            # closed while provisioning; drop what was just created
            logger.info(f"[Subscription] {self.name} closed before it became active")
            try:
                if await self.broker.subscription_exists(self.name):
                    await self.broker.delete_subscription(self.name)
            except Exception as e:
                logger.exception(
                    f"[Subscription] error deleting abandoned subscription {self.name}: {e}"
                )
            return EventSubscription(self.id, self.close)

        self._dispatcher = asyncio.create_task(self._dispatch_loop())
        try:
            await self.broker.on_message(self.name, self._on_message)
        except Exception as e:
            logger.exception(
                f"[Subscription] could not attach handler to {self.name}: {e}"
            )

        self.state = SubscriptionState.ACTIVE
        logger.info(
            f"[Subscription] subscribed tenant={self.tenant} id={self.id} subscription={self.name}"
        )
        return EventSubscription(self.id, self.close)

    async def _on_message(self, message: BrokerMessage) -> None:
        # ack before anything else: a failing listener must not cause redelivery
        try:
            await self.broker.ack(message)
        except Exception as e:
            logger.exception(f"[Subscription] ack failed {self.name} id={message.id}: {e}")

        try:
            envelope = codec.decode(message.data)
        except DecodeError as e:
            logger.error(
                f"[Subscription] dropping malformed message {self.name} id={message.id}: {e}"
            )
            return
        self._queue.put_nowait(envelope)

    async def _dispatch_loop(self) -> None:
        while True:
            envelope = await self._queue.get()
            if self.state in (SubscriptionState.CLOSING, SubscriptionState.CLOSED):
                return
            try:
                result = self.listener(self.tenant, envelope.event, envelope.indexes)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.exception(
                    f"[Subscription] listener error tenant={self.tenant} id={self.id}: {e}"
                )

    async def close(self) -> None:
        async with self._close_lock:
            if self.state in (SubscriptionState.CLOSING, SubscriptionState.CLOSED):
                return
            if self.state is SubscriptionState.UNSUBSCRIBED:
                self.state = SubscriptionState.CLOSED
                return
            if self.state is SubscriptionState.PROVISIONING:
                # subscribe() sees this once provisioning returns and cleans up
                self.state = SubscriptionState.CLOSED
                if self.on_closed:
                    self.on_closed(self)
                return

            self.state = SubscriptionState.CLOSING
            try:
                await self.broker.remove_listener(self.name, self._on_message)
                await self.broker.close_subscription(self.name)
                if await self.broker.subscription_exists(self.name):
                    await self.broker.delete_subscription(self.name)
                else:
                    logger.debug(f"[Subscription] {self.name} already closed")
            except Exception as e:
                logger.exception(
                    f"[Subscription] error closing and deleting subscription {self.name}: {e}"
                )
            finally:
                await self._stop_dispatcher()
                self.state = SubscriptionState.CLOSED
                logger.info(f"[Subscription] closed {self.name}")
                if self.on_closed:
                    self.on_closed(self)

    async def _stop_dispatcher(self) -> None:
        task, self._dispatcher = self._dispatcher, None
        if task is None:
            return
        # a listener closing its own handle runs inside the dispatcher; wake the
        # loop so it sees the CLOSED state and exits
        if task is asyncio.current_task():
            self._queue.put_nowait(None)
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
