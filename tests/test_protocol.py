"""Tests for the wire protocol: envelopes, snapshot codec, fingerprints."""

from __future__ import annotations

import json
from datetime import UTC, datetime

import pytest

from _harness import make_issue
from stagesync.exceptions import PayloadError
from stagesync.models import Equipment, EquipmentType, Position, Snapshot
from stagesync.protocol import (
    RequestStateMessage,
    UpdateMessage,
    deserialize_snapshot,
    encode_request_state,
    encode_state,
    encode_update,
    fingerprint,
    parse_inbound,
    parse_state_packet,
    serialize_snapshot,
)


def _snapshot() -> Snapshot:
    return Snapshot(
        equipment=[
            Equipment(
                id="mic-1",
                type=EquipmentType.MIC,
                label="Vox 1",
                position=Position(x=0.5, y=0.25),
            )
        ],
        issues=[make_issue()],
    )


# ------------------------------------------------------------------
# Snapshot codec
# ------------------------------------------------------------------


def test_serialize_uses_wire_shape() -> None:
    payload = serialize_snapshot(_snapshot())
    issue = payload["issues"][0]
    assert issue["equipmentId"] == "mic-1"
    assert issue["reportedAt"] == "2026-03-14T19:30:15.123Z"
    assert "assignedTo" not in issue
    assert payload["equipment"][0]["position"] == {"x": 0.5, "y": 0.25}


def test_timestamp_round_trip_keeps_milliseconds() -> None:
    reported = datetime(2026, 3, 14, 19, 30, 15, 987654, tzinfo=UTC)
    snapshot = Snapshot(issues=[make_issue(reported_at=reported)])

    wire = json.loads(json.dumps(serialize_snapshot(snapshot)))
    restored = deserialize_snapshot(wire)

    delta = abs(restored.issues[0].reported_at - reported)
    assert delta.total_seconds() < 0.001
    assert restored.issues[0].reported_at.tzinfo is not None


def test_deserialize_rejects_non_object() -> None:
    with pytest.raises(PayloadError):
        deserialize_snapshot(["not", "a", "snapshot"])


def test_deserialize_never_returns_partial_result() -> None:
    payload = serialize_snapshot(_snapshot())
    payload["issues"].append({"id": "broken"})
    with pytest.raises(PayloadError):
        deserialize_snapshot(payload)


def test_fingerprint_ignores_key_order() -> None:
    assert fingerprint({"a": 1, "b": [1, 2]}) == fingerprint({"b": [1, 2], "a": 1})
    assert fingerprint({"a": 1}) != fingerprint({"a": 2})


def test_fingerprint_stable_across_round_trip() -> None:
    payload = serialize_snapshot(_snapshot())
    again = serialize_snapshot(deserialize_snapshot(json.loads(json.dumps(payload))))
    assert fingerprint(payload) == fingerprint(again)


# ------------------------------------------------------------------
# Frames
# ------------------------------------------------------------------


def test_encode_update_frame() -> None:
    frame = json.loads(encode_update({"equipment": [], "issues": []}, "client-abc"))
    assert frame == {"type": "stage:update", "payload": {"equipment": [], "issues": []}, "originId": "client-abc"}


def test_encode_request_state_frame() -> None:
    assert json.loads(encode_request_state("client-abc")) == {"type": "stage:request-state", "originId": "client-abc"}


def test_encode_state_defaults_origin_to_server() -> None:
    frame = json.loads(encode_state({"equipment": []}, 3))
    assert frame == {"type": "stage:state", "payload": {"equipment": []}, "version": 3, "originId": "server"}


def test_parse_inbound_update() -> None:
    message = parse_inbound('{"type":"stage:update","payload":{"issues":[]},"originId":"client-a"}')
    assert isinstance(message, UpdateMessage)
    assert message.payload == {"issues": []}
    assert message.origin_id == "client-a"


def test_parse_inbound_request_state() -> None:
    message = parse_inbound('{"type":"stage:request-state","originId":"client-a"}')
    assert isinstance(message, RequestStateMessage)


def test_parse_inbound_keeps_payload_unvalidated() -> None:
    message = parse_inbound('{"type":"stage:update","payload":{"whatever":true}}')
    assert isinstance(message, UpdateMessage)
    assert message.payload == {"whatever": True}
    assert message.origin_id is None


@pytest.mark.parametrize(
    "text",
    [
        "not json",
        "[1, 2, 3]",
        '{"type":"stage:bogus"}',
        '{"type":"stage:update"}',
        '{"type":"stage:update","payload":null}',
        '{"payload":{}}',
    ],
)
def test_parse_inbound_rejects_malformed(text: str) -> None:
    with pytest.raises(PayloadError):
        parse_inbound(text)


def test_parse_state_packet() -> None:
    packet = parse_state_packet('{"type":"stage:state","payload":{"issues":[]},"version":7,"originId":"client-b"}')
    assert packet is not None
    assert packet.version == 7
    assert packet.origin_id == "client-b"


def test_parse_state_packet_ignores_other_types() -> None:
    assert parse_state_packet('{"type":"stage:update","payload":{}}') is None
    assert parse_state_packet('{"type":"stage:state"}') is None


def test_parse_state_packet_rejects_non_json() -> None:
    with pytest.raises(PayloadError):
        parse_state_packet("{oops")


@pytest.mark.parametrize(
    ("origin", "expected"),
    [(42, "42"), (True, "true"), ({"id": 1}, '{"id":1}'), (0, None), ("", None)],
)
def test_parse_inbound_coerces_origin(origin: object, expected: str | None) -> None:
    message = parse_inbound(json.dumps({"type": "stage:update", "payload": {}, "originId": origin}))
    assert isinstance(message, UpdateMessage)
    assert message.origin_id == expected
