"""
Redis-based data store for production deployments.

Each blob is a hash holding the bytes and their metadata; an index set of all
blob keys makes clear() possible without scanning the keyspace.
"""

import logging
from typing import Optional

from redis import asyncio as aioredis

from dwnstream import settings
from dwnstream.data_store.base import BaseDataStore, DataInput, object_key, to_bytes
from dwnstream.schemas import DataStoreGetResult, DataStorePutResult

logger = logging.getLogger(__name__)


class RedisDataStore(BaseDataStore):
    def __init__(
        self,
        redis_url: str = settings.REDIS_URL,
        key_prefix: str = "dwn",
        client: Optional[aioredis.Redis] = None,
    ):
        """
        Initialize Redis data store.

        Args:
            redis_url: Redis connection URL (e.g., redis://localhost:6379)
            key_prefix: Prefix for all Redis keys (default: "dwn")
            client: Already constructed client to use instead of redis_url
        """
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self._redis: Optional[aioredis.Redis] = client

    def _key(self, *parts: str) -> str:
        """Build a namespaced Redis key."""
        return f"{self.key_prefix}:{':'.join(parts)}"

    @property
    def _index_key(self) -> str:
        return self._key("datastore", "keys")

    async def open(self) -> None:
        if self._redis:
            return
        # binary payloads, so no decode_responses here
        self._redis = aioredis.from_url(self.redis_url)

    async def close(self) -> None:
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def _client(self) -> aioredis.Redis:
        if not self._redis:
            await self.open()
        return self._redis

    async def put(
        self, tenant: str, record_id: str, data_cid: str, data: DataInput
    ) -> DataStorePutResult:
        redis = await self._client()
        body = await to_bytes(data)
        key = self._key(object_key(tenant, record_id, data_cid))

        stored_size = await redis.hget(key, "data_size")
        if stored_size is not None:
            return DataStorePutResult(data_cid=data_cid, data_size=int(stored_size))

        async with redis.pipeline(transaction=True) as pipe:
            await pipe.hset(
                key,
                mapping={
                    "data": body,
                    "data_cid": data_cid,
                    "data_size": len(body),
                    "tenant": tenant,
                },
            )
            await pipe.sadd(self._index_key, key)
            await pipe.execute()
        logger.debug(f"[RedisDataStore] stored {key} ({len(body)} bytes)")
        return DataStorePutResult(data_cid=data_cid, data_size=len(body))

    async def get(
        self, tenant: str, record_id: str, data_cid: str
    ) -> Optional[DataStoreGetResult]:
        redis = await self._client()
        key = self._key(object_key(tenant, record_id, data_cid))
        stored = await redis.hgetall(key)
        if not stored:
            logger.debug(f"[RedisDataStore] requested data does not exist: {key}")
            return None
        return DataStoreGetResult(
            data_cid=stored.get(b"data_cid", b"").decode("utf-8"),
            data_size=int(stored.get(b"data_size", 0)),
            data=stored.get(b"data", b""),
        )

    async def delete(self, tenant: str, record_id: str, data_cid: str) -> None:
        redis = await self._client()
        key = self._key(object_key(tenant, record_id, data_cid))
        async with redis.pipeline(transaction=True) as pipe:
            await pipe.delete(key)
            await pipe.srem(self._index_key, key)
            await pipe.execute()

    async def clear(self) -> None:
        redis = await self._client()
        keys = await redis.smembers(self._index_key)
        if keys:
            await redis.delete(*keys)
        await redis.delete(self._index_key)
