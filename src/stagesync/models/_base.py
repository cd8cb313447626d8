"""Base model and timestamp type for stage records.

Every record inherits from :class:`StageBaseModel` which provides:

* ``alias_generator=to_camel`` so snake_case fields map to the camelCase
  keys used on the wire.
* ``extra="allow"`` so keys this library does not know about survive a
  deserialize/serialize round trip untouched.
* A ``model_validator(mode="before")`` that drops ``null`` values so the
  field default is used instead.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, PlainSerializer, model_validator
from pydantic.alias_generators import to_camel


def ensure_utc(value: Any) -> Any:
    """Attach UTC to naive datetimes; leave everything else for pydantic."""
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def format_wire_timestamp(value: datetime) -> str:
    """Render *value* as ISO-8601 UTC with millisecond precision and a ``Z`` suffix.

    ``2026-01-01T18:30:00.250Z``
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    text = value.astimezone(UTC).isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")


WireTimestamp = Annotated[
    datetime,
    BeforeValidator(ensure_utc),
    PlainSerializer(format_wire_timestamp, return_type=str, when_used="json"),
]
"""Timezone-aware instant in memory, ISO-8601 string on the wire."""


class StageBaseModel(BaseModel):
    """Base for all records carried inside a snapshot."""

    model_config = ConfigDict(
        frozen=True,
        extra="allow",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, values: Any) -> Any:
        """Treat explicit ``null`` like a missing key."""
        if not isinstance(values, dict):
            return values
        return {key: value for key, value in values.items() if value is not None}
