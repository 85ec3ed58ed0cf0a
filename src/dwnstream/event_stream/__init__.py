from dwnstream.event_stream.base import BaseEventStream, EventListener, EventSubscription
from dwnstream.event_stream.naming import normalize, subscription_name, topic_name
from dwnstream.event_stream.provisioner import ResourceProvisioner
from dwnstream.event_stream.stream import PubSubEventStream
from dwnstream.event_stream.subscription import ManagedSubscription, SubscriptionState

__all__ = [
    "BaseEventStream",
    "EventListener",
    "EventSubscription",
    "ManagedSubscription",
    "PubSubEventStream",
    "ResourceProvisioner",
    "SubscriptionState",
    "normalize",
    "subscription_name",
    "topic_name",
]
