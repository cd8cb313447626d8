"""Wire protocol: envelopes, snapshot codec and change fingerprints.

Every frame is a UTF-8 text frame holding one JSON object::

    {"type": "stage:update", "payload": {...}, "originId": "client-1a2b3c4d"}
    {"type": "stage:request-state", "originId": "client-1a2b3c4d"}
    {"type": "stage:state", "payload": {...}, "version": 3, "originId": "server"}

The relay only checks the envelope; the payload is stored and forwarded
as-is. Agents validate the payload into a :class:`Snapshot` on receipt.
"""

from __future__ import annotations

import json
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from stagesync._constants import MSG_REQUEST_STATE, MSG_STATE, MSG_UPDATE, SERVER_ORIGIN
from stagesync.exceptions import PayloadError
from stagesync.models.snapshot import Snapshot

_JSON_SEPARATORS = (",", ":")


def _coerce_origin(value: Any) -> str | None:
    """Any truthy origin is kept as text; falsy ones count as missing."""
    if not value:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=_JSON_SEPARATORS)


class _Envelope(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )


class UpdateMessage(_Envelope):
    """Client -> relay: replace the shared snapshot."""

    type: Literal["stage:update"] = MSG_UPDATE
    payload: Any
    origin_id: str | None = None

    @field_validator("payload")
    @classmethod
    def _require_payload(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("update without payload")
        return value

    @field_validator("origin_id", mode="before")
    @classmethod
    def _coerce_origin_id(cls, value: Any) -> str | None:
        return _coerce_origin(value)


class RequestStateMessage(_Envelope):
    """Client -> relay: send me the current snapshot, if any."""

    type: Literal["stage:request-state"] = MSG_REQUEST_STATE
    origin_id: str | None = None

    @field_validator("origin_id", mode="before")
    @classmethod
    def _coerce_origin_id(cls, value: Any) -> str | None:
        return _coerce_origin(value)


class StateMessage(_Envelope):
    """Relay -> client: versioned snapshot, tagged with the update's origin."""

    type: Literal["stage:state"] = MSG_STATE
    payload: Any = None
    version: int = 0
    origin_id: str = SERVER_ORIGIN


InboundMessage = Annotated[UpdateMessage | RequestStateMessage, Field(discriminator="type")]

_INBOUND_ADAPTER: TypeAdapter[UpdateMessage | RequestStateMessage] = TypeAdapter(InboundMessage)


# ------------------------------------------------------------------
# Snapshot codec
# ------------------------------------------------------------------


def serialize_snapshot(snapshot: Snapshot) -> dict[str, Any]:
    """Wire form of *snapshot*: camelCase keys, ISO timestamps, no nulls."""
    return snapshot.model_dump(mode="json", by_alias=True, exclude_none=True)


def deserialize_snapshot(payload: Any) -> Snapshot:
    """Validate a wire payload into a :class:`Snapshot`.

    Raises :class:`PayloadError` instead of returning a partial result.
    """
    if not isinstance(payload, dict):
        raise PayloadError(f"snapshot payload is not an object: {type(payload).__name__}")
    try:
        return Snapshot.model_validate(payload)
    except ValidationError as exc:
        raise PayloadError(f"invalid snapshot payload: {exc.error_count()} error(s)") from exc


def fingerprint(payload: Any) -> str:
    """Stable string form of a wire payload used for change detection."""
    return json.dumps(payload, sort_keys=True, separators=_JSON_SEPARATORS, ensure_ascii=False)


# ------------------------------------------------------------------
# Frames
# ------------------------------------------------------------------


def _dump(message: _Envelope) -> str:
    return json.dumps(message.model_dump(by_alias=True), separators=_JSON_SEPARATORS, ensure_ascii=False)


def encode_update(payload: Any, origin_id: str) -> str:
    return _dump(UpdateMessage(payload=payload, origin_id=origin_id))


def encode_request_state(origin_id: str) -> str:
    return _dump(RequestStateMessage(origin_id=origin_id))


def encode_state(payload: Any, version: int, origin_id: str | None = None) -> str:
    """Build a state packet; a missing origin is reported as ``"server"``."""
    return _dump(StateMessage(payload=payload, version=version, origin_id=origin_id or SERVER_ORIGIN))


def parse_frame(text: str) -> dict[str, Any]:
    """Decode a text frame into a JSON object."""
    try:
        message = json.loads(text)
    except json.JSONDecodeError as exc:
        raise PayloadError(f"frame is not JSON: {exc.msg}", raw=text[:200]) from exc
    if not isinstance(message, dict):
        raise PayloadError("frame is not a JSON object", raw=text[:200])
    return message


def parse_inbound(text: str) -> UpdateMessage | RequestStateMessage:
    """Parse a client -> relay frame.

    Raises :class:`PayloadError` for non-JSON frames, unknown message
    types and updates without a payload.
    """
    message = parse_frame(text)
    try:
        return _INBOUND_ADAPTER.validate_python(message)
    except ValidationError as exc:
        raise PayloadError(
            f"unrecognized message type={message.get('type')!r}",
            raw=text[:200],
        ) from exc


def parse_state_packet(text: str) -> StateMessage | None:
    """Parse a relay -> client frame.

    Returns ``None`` for frames that are not state packets or carry no
    payload; raises :class:`PayloadError` when the frame is not a JSON object.
    """
    message = parse_frame(text)
    if message.get("type") != MSG_STATE or message.get("payload") is None:
        return None
    try:
        return StateMessage.model_validate(message)
    except ValidationError as exc:
        raise PayloadError("malformed state packet", raw=text[:200]) from exc
