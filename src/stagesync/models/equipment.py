"""Stage equipment records."""

from __future__ import annotations

from enum import StrEnum

from stagesync.models._base import StageBaseModel
from stagesync.models.issue import IssueStatus


class EquipmentType(StrEnum):
    MIC = "mic"
    LIGHT = "light"


class Crew(StrEnum):
    SOUND = "sound"
    LIGHTING = "lighting"
    STAGE = "stage"


class Position(StageBaseModel):
    """Position on the stage plan, normalized to 0..1 on each axis."""

    x: float
    y: float


class Equipment(StageBaseModel):
    """A piece of equipment placed on the stage plan."""

    id: str
    type: EquipmentType
    label: str
    position: Position
    status: IssueStatus = IssueStatus.RESOLVED
    crew: Crew | None = None
    icon: str | None = None
    """Icon reference, or ``"other"`` to render the label's initials."""


def crew_for(equipment_type: EquipmentType) -> Crew:
    """Default owning crew for a newly placed piece of equipment."""
    return Crew.SOUND if equipment_type == EquipmentType.MIC else Crew.LIGHTING
