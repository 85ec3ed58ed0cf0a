import logging
from typing import Any, Callable, Dict, Optional

from dwnstream import settings
from dwnstream.broker.base import BaseBroker
from dwnstream.broker.redis_stream_broker import RedisStreamBroker
from dwnstream.errors import ConfigurationError, DwnError, DwnErrorCode
from dwnstream.event_stream import codec
from dwnstream.event_stream.base import BaseEventStream, EventListener, EventSubscription
from dwnstream.event_stream.naming import topic_name
from dwnstream.event_stream.provisioner import ResourceProvisioner
from dwnstream.event_stream.subscription import ManagedSubscription, SubscriptionState
from dwnstream.schemas import EventEnvelope, IndexValue

logger = logging.getLogger(__name__)


def _log_error(error: Any) -> None:
    logger.error(f"[EventStream] event stream error: {error}")


class PubSubEventStream(BaseEventStream):
    """
    DWN event stream over a topic/subscription broker.

    Each tenant gets one topic; each (tenant, listener id) pair gets its own
    subscription, so every listener receives every event emitted for its tenant.

    The broker is either injected or built on first use from the project id
    (``DWN_PROJECT_ID``) and ``REDIS_URL``; either way the stream keeps that one
    instance for its lifetime and hands it to the provisioner and every
    subscription.
    """

    def __init__(
        self,
        project_id: Optional[str] = None,
        broker: Optional[BaseBroker] = None,
        error_handler: Optional[Callable[[Any], None]] = None,
        provisioner_options: Optional[Dict[str, Any]] = None,
        redis_url: str = settings.REDIS_URL,
    ):
        self.project_id = project_id or settings.project_id()
        self.broker = broker
        self.error_handler = error_handler or _log_error
        self.provisioner_options = provisioner_options or {}
        self.redis_url = redis_url

        self.provisioner: Optional[ResourceProvisioner] = None
        self.is_open = False

        self._owns_broker = broker is None
        self._subscriptions: Dict[str, ManagedSubscription] = {}

    @property
    def subscriptions(self) -> Dict[str, ManagedSubscription]:
        return dict(self._subscriptions)

    def _require_broker(self) -> BaseBroker:
        if not self.project_id:
            raise ConfigurationError(
                "project id is not set. Check env variable DWN_PROJECT_ID"
            )
        if self.broker is None:
            self.broker = RedisStreamBroker(
                namespace=self.project_id, redis_url=self.redis_url
            )
        if self.provisioner is None:
            self.provisioner = ResourceProvisioner(
                self.broker, **self.provisioner_options
            )
        return self.broker

    async def open(self) -> None:
        self.is_open = True
        if not self.project_id:
            logger.warning(
                "[EventStream] opened without a project id; subscribe/emit will fail"
            )
            return
        try:
            await self._require_broker().connect()
        except Exception as e:
            logger.exception(f"[EventStream] could not connect broker: {e}")
        logger.info(f"[EventStream] opened project={self.project_id}")

    async def close(self) -> None:
        self.is_open = False
        for name, managed in list(self._subscriptions.items()):
            try:
                await managed.close()
            except Exception as e:
                logger.exception(f"[EventStream] error closing subscription {name}: {e}")
        self._subscriptions.clear()

        if self.broker is not None and self._owns_broker:
            try:
                await self.broker.close()
            except Exception as e:
                logger.exception(f"[EventStream] error closing broker: {e}")
        logger.info("[EventStream] closed")

    async def subscribe(
        self, tenant: str, id: str, listener: EventListener
    ) -> EventSubscription:
        broker = self._require_broker()
        managed = ManagedSubscription(
            broker,
            self.provisioner,
            tenant,
            id,
            listener,
            on_closed=self._forget,
        )
        previous = self._subscriptions.get(managed.name)
        if previous is not None and previous.state is SubscriptionState.ACTIVE:
            logger.warning(
                f"[EventStream] {managed.name} subscribed twice; the earlier handle "
                "is no longer tracked and must be closed by its holder"
            )
        # registered before provisioning so a concurrent close() sweeps it too
        self._subscriptions[managed.name] = managed
        try:
            return await managed.subscribe()
        except Exception:
            self._forget(managed)
            raise

    def _forget(self, managed: ManagedSubscription) -> None:
        if self._subscriptions.get(managed.name) is managed:
            del self._subscriptions[managed.name]

    async def emit(
        self, tenant: str, event: Dict[str, Any], indexes: Dict[str, IndexValue]
    ) -> None:
        if not self.is_open:
            self.error_handler(
                DwnError(
                    DwnErrorCode.EVENT_STREAM_NOT_OPEN,
                    "a message emitted when EventStream is closed",
                )
            )
            return

        broker = self._require_broker()
        topic = topic_name(tenant)
        await self.provisioner.ensure_topic(topic)

        try:
            payload = codec.encode(
                EventEnvelope(tenant=tenant, event=event, indexes=indexes or {})
            )
            msg_id = await broker.publish(topic, payload)
            logger.debug(f"[EventStream] emitted tenant={tenant} topic={topic} id={msg_id}")
        except Exception as e:
            logger.exception(f"[EventStream] emit failed tenant={tenant}: {e}")
            self.error_handler(e)
