from dwnstream.broker.base import BaseBroker, BrokerMessage, MessageHandler
from dwnstream.broker.memory_broker import InMemoryBroker
from dwnstream.broker.redis_stream_broker import RedisStreamBroker

__all__ = [
    "BaseBroker",
    "BrokerMessage",
    "MessageHandler",
    "InMemoryBroker",
    "RedisStreamBroker",
]
