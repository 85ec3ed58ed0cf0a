"""Unit tests for the envelope codec."""

import json

import pytest

from dwnstream.errors import DecodeError, DwnErrorCode
from dwnstream.event_stream import codec
from dwnstream.schemas import EventEnvelope


class TestCodec:
    def test_encode_is_deterministic_json(self):
        envelope = EventEnvelope(
            tenant="tenantA",
            event={"type": "create", "b": 2, "a": 1},
            indexes={"schema": "foo"},
        )
        first = codec.encode(envelope)
        second = codec.encode(
            EventEnvelope(
                tenant="tenantA",
                event={"a": 1, "type": "create", "b": 2},
                indexes={"schema": "foo"},
            )
        )
        assert first == second
        assert json.loads(first) == {
            "tenant": "tenantA",
            "event": {"a": 1, "b": 2, "type": "create"},
            "indexes": {"schema": "foo"},
        }

    def test_encode_rejects_non_json_values(self):
        envelope = EventEnvelope(tenant="t", event={"blob": b"\x00\x01"})

        with pytest.raises(TypeError):
            codec.encode(envelope)

    def test_decode_restores_envelope(self):
        envelope = EventEnvelope(
            tenant="did:example:1",
            event={"message": {"descriptor": {"method": "Write"}}},
            indexes={"published": True, "size": 10, "tags": ["a", "b"]},
        )
        assert codec.decode(codec.encode(envelope)) == envelope

    def test_decode_accepts_text(self):
        decoded = codec.decode('{"tenant": "t", "event": {}, "indexes": {}}')
        assert decoded.tenant == "t"

    def test_decode_defaults_missing_indexes(self):
        assert codec.decode(b'{"tenant": "t", "event": {}}').indexes == {}

    @pytest.mark.parametrize(
        "payload",
        [
            b"not json",
            b"\xff\xfe",
            b"[1, 2, 3]",
            b'{"event": {}}',
            b'{"tenant": "t", "event": "nope"}',
        ],
    )
    def test_decode_rejects_malformed_payloads(self, payload):
        with pytest.raises(DecodeError) as exc:
            codec.decode(payload)
        assert exc.value.code is DwnErrorCode.EVENT_STREAM_DECODE
