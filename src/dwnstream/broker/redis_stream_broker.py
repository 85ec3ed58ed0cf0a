import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

from redis import asyncio as aioredis

from dwnstream import settings
from dwnstream.broker.base import BaseBroker, BrokerMessage, MessageHandler
from dwnstream.errors import ResourceExistsError

logger = logging.getLogger(__name__)


class RedisStreamBroker(BaseBroker):
    """
    Broker on Redis Streams:
      - one stream per topic ({namespace}:stream:{topic}), trimmed on publish (maxlen)
      - one consumer group per subscription, created at "$" so it only sees
        messages published after it exists
      - topic and subscription registries so existence checks do not depend on
        stream contents
      - one consume task per subscription with at least one listener
    """

    def __init__(
        self,
        namespace: str,
        redis_url: str = settings.REDIS_URL,
        default_maxlen: int = settings.STREAM_MAXLEN,
        block_ms: Optional[int] = 5000,
        batch_size: int = 10,
        poll_interval: float = 1.0,
        client: Optional[aioredis.Redis] = None,
    ):
        self.namespace = namespace
        self.redis_url = redis_url
        self.default_maxlen = default_maxlen
        self.block_ms = block_ms
        self.batch_size = batch_size
        self.poll_interval = poll_interval

        self._redis: Optional[aioredis.Redis] = client
        self._connect_lock = asyncio.Lock()

        self._handlers: Dict[str, List[MessageHandler]] = {}
        self._consumers: Dict[str, asyncio.Task] = {}

    # ----------------
    # Keys
    # ----------------
    def stream_key(self, topic: str) -> str:
        return f"{self.namespace}:stream:{topic}"

    @property
    def _topics_key(self) -> str:
        return f"{self.namespace}:topics"

    @property
    def _subscriptions_key(self) -> str:
        return f"{self.namespace}:subscriptions"

    # ----------------
    # Connection
    # ----------------
    async def connect(self) -> None:
        async with self._connect_lock:
            if self._redis:
                return
            self._redis = aioredis.from_url(self.redis_url, decode_responses=True)
            logger.info(f"[RedisStreamBroker] connected -> {self.redis_url}")

    async def close(self) -> None:
        for subscription in list(self._consumers):
            await self.close_subscription(subscription)
        if self._redis:
            await self._redis.aclose()
            self._redis = None
        logger.info("[RedisStreamBroker] closed")

    async def _client(self) -> aioredis.Redis:
        if not self._redis:
            await self.connect()
        return self._redis

    # ----------------
    # Topics
    # ----------------
    async def topic_exists(self, topic: str) -> bool:
        redis = await self._client()
        return bool(await redis.sismember(self._topics_key, topic))

    async def create_topic(self, topic: str) -> None:
        redis = await self._client()
        added = await redis.sadd(self._topics_key, topic)
        if not added:
            raise ResourceExistsError(topic)
        logger.info(f"[RedisStreamBroker] created topic {topic}")

    async def delete_topic(self, topic: str) -> None:
        redis = await self._client()
        owned = await redis.hgetall(self._subscriptions_key)
        for subscription, sub_topic in owned.items():
            if sub_topic == topic:
                await self.delete_subscription(subscription)
        await redis.delete(self.stream_key(topic))
        await redis.srem(self._topics_key, topic)
        logger.info(f"[RedisStreamBroker] deleted topic {topic}")

    async def list_topics(self) -> List[str]:
        redis = await self._client()
        return sorted(await redis.smembers(self._topics_key))

    # ----------------
    # Publish
    # ----------------
    async def publish(
        self, topic: str, data: bytes, maxlen: Optional[int] = None
    ) -> str:
        """
        Append data to the topic's stream.
        Returns the assigned stream id.
        """
        redis = await self._client()
        stream_name = self.stream_key(topic)
        msg_id = await redis.xadd(
            stream_name,
            {"data": data},
            maxlen=maxlen or self.default_maxlen,
            approximate=True,
        )
        logger.debug(f"[RedisStreamBroker] published {stream_name} id={msg_id}")
        return msg_id

    # ----------------
    # Subscriptions
    # ----------------
    async def subscription_exists(self, subscription: str) -> bool:
        redis = await self._client()
        return bool(await redis.hexists(self._subscriptions_key, subscription))

    async def create_subscription(self, topic: str, subscription: str) -> None:
        redis = await self._client()
        stream_name = self.stream_key(topic)
        try:
            await redis.xgroup_create(stream_name, subscription, id="$", mkstream=True)
        except aioredis.ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise
            # group survived a crash between the two writes; repair the registry
            await redis.hset(self._subscriptions_key, subscription, topic)
            raise ResourceExistsError(subscription) from e
        await redis.hset(self._subscriptions_key, subscription, topic)
        logger.info(
            f"[RedisStreamBroker] created group {subscription} for {stream_name}"
        )

    async def delete_subscription(self, subscription: str) -> None:
        await self.close_subscription(subscription)
        redis = await self._client()
        topic = await redis.hget(self._subscriptions_key, subscription)
        if topic is None:
            return
        try:
            await redis.xgroup_destroy(self.stream_key(topic), subscription)
        except aioredis.ResponseError as e:
            logger.warning(
                f"[RedisStreamBroker] could not destroy group {subscription}: {e}"
            )
        await redis.hdel(self._subscriptions_key, subscription)
        logger.info(f"[RedisStreamBroker] deleted subscription {subscription}")

    async def list_subscriptions(self) -> List[str]:
        redis = await self._client()
        return sorted(await redis.hkeys(self._subscriptions_key))

    # ----------------
    # Delivery
    # ----------------
    async def on_message(self, subscription: str, handler: MessageHandler) -> None:
        await self._client()
        self._handlers.setdefault(subscription, []).append(handler)
        task = self._consumers.get(subscription)
        if task is None or task.done():
            self._consumers[subscription] = asyncio.create_task(
                self._consume_loop(subscription)
            )

    async def remove_listener(self, subscription: str, handler: MessageHandler) -> None:
        handlers = self._handlers.get(subscription, [])
        if handler in handlers:
            handlers.remove(handler)

    async def ack(self, message: BrokerMessage) -> None:
        redis = await self._client()
        await redis.xack(message.attributes["stream"], message.subscription, message.id)

    async def close_subscription(self, subscription: str) -> None:
        self._handlers.pop(subscription, None)
        task = self._consumers.pop(subscription, None)
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _consume_loop(self, subscription: str) -> None:
        """
        Read from the subscription's group (XREADGROUP) and hand every entry to
        the registered handlers. Acknowledgment is left to the handlers.
        """
        consumer = f"consumer:{subscription}:{id(self)}"
        logger.info(
            f"[RedisStreamBroker] consumer loop start group={subscription} consumer={consumer}"
        )
        try:
            while True:
                try:
                    topic = await self._redis.hget(self._subscriptions_key, subscription)
                    if topic is None:
                        logger.warning(
                            f"[RedisStreamBroker] subscription {subscription} not found, "
                            "stopping consumer"
                        )
                        return
                    stream_name = self.stream_key(topic)
                    entries = await self._redis.xreadgroup(
                        groupname=subscription,
                        consumername=consumer,
                        streams={stream_name: ">"},
                        count=self.batch_size,
                        block=self.block_ms,
                    )
                    if not entries:
                        if self.block_ms is None:
                            await asyncio.sleep(self.poll_interval)
                        continue
                    for _, msgs in entries:
                        for msg_id, fields in msgs:
                            await self._dispatch(
                                subscription, stream_name, msg_id, fields
                            )
                except asyncio.CancelledError:
                    raise
                except Exception as err:
                    logger.exception(
                        f"[RedisStreamBroker] error in consume loop group={subscription}: {err}"
                    )
                    await asyncio.sleep(self.poll_interval)
        finally:
            logger.info(f"[RedisStreamBroker] consumer loop stopped group={subscription}")

    async def _dispatch(
        self, subscription: str, stream_name: str, msg_id: str, fields: Dict[str, Any]
    ) -> None:
        raw = fields.get("data", "")
        data = raw.encode("utf-8") if isinstance(raw, str) else raw
        message = BrokerMessage(
            id=msg_id,
            subscription=subscription,
            data=data,
            attributes={"stream": stream_name},
        )
        for handler in list(self._handlers.get(subscription, [])):
            try:
                await handler(message)
            except Exception as err:
                logger.exception(
                    f"[RedisStreamBroker] handler error group={subscription} id={msg_id}: {err}"
                )

    # ----------------
    # Operator helpers
    # ----------------
    async def describe_subscriptions(self) -> List[Dict[str, Any]]:
        """Topic, consumer count, pending count and last delivered id per subscription."""
        redis = await self._client()
        owned = await redis.hgetall(self._subscriptions_key)
        groups_by_stream: Dict[str, Dict[str, Dict[str, Any]]] = {}
        rows = []
        for subscription, topic in sorted(owned.items()):
            stream_name = self.stream_key(topic)
            if stream_name not in groups_by_stream:
                try:
                    groups = await redis.xinfo_groups(stream_name)
                except aioredis.ResponseError:
                    groups = []
                groups_by_stream[stream_name] = {g["name"]: g for g in groups}
            info = groups_by_stream[stream_name].get(subscription, {})
            rows.append(
                {
                    "subscription": subscription,
                    "topic": topic,
                    "consumers": info.get("consumers", 0),
                    "pending": info.get("pending", 0),
                    "last_delivered_id": info.get("last-delivered-id", "-"),
                }
            )
        return rows

    async def topic_length(self, topic: str) -> int:
        redis = await self._client()
        return await redis.xlen(self.stream_key(topic))

    async def recent_messages(self, topic: str, limit: int = 5) -> List[Tuple[str, str]]:
        redis = await self._client()
        entries = await redis.xrevrange(self.stream_key(topic), count=limit)
        return [(msg_id, fields.get("data", "")) for msg_id, fields in entries]
