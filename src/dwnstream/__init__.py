from dwnstream.broker import InMemoryBroker, RedisStreamBroker
from dwnstream.data_store import FileDataStore, RedisDataStore
from dwnstream.errors import (
    ConfigurationError,
    DecodeError,
    DwnError,
    DwnErrorCode,
    ProvisioningError,
)
from dwnstream.event_stream import EventSubscription, PubSubEventStream
from dwnstream.schemas import EventEnvelope

__all__ = [
    "ConfigurationError",
    "DecodeError",
    "DwnError",
    "DwnErrorCode",
    "EventEnvelope",
    "EventSubscription",
    "FileDataStore",
    "InMemoryBroker",
    "ProvisioningError",
    "PubSubEventStream",
    "RedisDataStore",
    "RedisStreamBroker",
]
