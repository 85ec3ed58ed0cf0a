from dwnstream.data_store.base import BaseDataStore
from dwnstream.data_store.file_store import FileDataStore
from dwnstream.data_store.redis_store import RedisDataStore

__all__ = ["BaseDataStore", "FileDataStore", "RedisDataStore"]
