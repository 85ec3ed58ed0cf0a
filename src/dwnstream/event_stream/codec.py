import json
from typing import Union

from pydantic import ValidationError

from dwnstream.errors import DecodeError
from dwnstream.schemas import EventEnvelope


def encode(envelope: EventEnvelope) -> bytes:
    """Serialize an envelope to the broker payload (sorted, compact JSON)."""
    return json.dumps(
        envelope.model_dump(), sort_keys=True, separators=(",", ":")
    ).encode("utf-8")


def decode(data: Union[bytes, str]) -> EventEnvelope:
    try:
        text = data.decode("utf-8") if isinstance(data, bytes) else data
        obj = json.loads(text)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DecodeError(f"payload is not JSON: {e}") from e
    if not isinstance(obj, dict):
        raise DecodeError(f"payload is a {type(obj).__name__}, expected an object")
    try:
        return EventEnvelope.model_validate(obj)
    except ValidationError as e:
        raise DecodeError(f"payload is not an event envelope: {e}") from e
