"""Broker resource names derived from tenant and listener identifiers."""

EVENTS_LISTENER_CHANNEL = "events"
RESERVED_SEPARATOR = ":"


def normalize(name: str) -> str:
    return name.replace(RESERVED_SEPARATOR, "_")


def topic_name(tenant: str) -> str:
    return normalize(f"{tenant}_{EVENTS_LISTENER_CHANNEL}")


def subscription_name(tenant: str, subscription_id: str) -> str:
    return normalize(f"sub_{tenant}_{subscription_id}")
