"""The shared stage document."""

from __future__ import annotations

from pydantic import Field

from stagesync.models._base import StageBaseModel
from stagesync.models.equipment import Equipment
from stagesync.models.issue import Issue


class Snapshot(StageBaseModel):
    """Everything the relay stores and every agent mirrors.

    Replaced wholesale on every accepted update; never merged.
    """

    equipment: list[Equipment] = Field(default_factory=list)
    issues: list[Issue] = Field(default_factory=list)
