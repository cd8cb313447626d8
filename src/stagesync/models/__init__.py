"""Data models for the shared stage document."""

from stagesync.models._base import StageBaseModel, WireTimestamp, format_wire_timestamp
from stagesync.models.equipment import Crew, Equipment, EquipmentType, Position, crew_for
from stagesync.models.issue import CustomStatus, Issue, IssueStatus
from stagesync.models.snapshot import Snapshot

__all__ = [
    "Crew",
    "CustomStatus",
    "Equipment",
    "EquipmentType",
    "Issue",
    "IssueStatus",
    "Position",
    "Snapshot",
    "StageBaseModel",
    "WireTimestamp",
    "crew_for",
    "format_wire_timestamp",
]
