"""Reported issue records."""

from __future__ import annotations

from enum import StrEnum

from stagesync.models._base import StageBaseModel, WireTimestamp


class IssueStatus(StrEnum):
    RESOLVED = "resolved"
    IN_PROGRESS = "in-progress"
    NEEDS_ATTENTION = "needs-attention"
    PROBLEM_DETECTED = "problem-detected"
    CUSTOM = "custom"


class CustomStatus(StageBaseModel):
    """Free-text status used when ``status`` is :attr:`IssueStatus.CUSTOM`."""

    name: str
    color: str


class Issue(StageBaseModel):
    """An issue reported against a piece of equipment.

    ``equipment_id`` is not enforced as a foreign key; an issue whose
    equipment no longer exists is kept as-is.
    """

    id: str
    equipment_id: str
    equipment_label: str = ""
    title: str
    description: str | None = None
    status: IssueStatus
    custom_status: CustomStatus | None = None
    reported_by: str
    reported_at: WireTimestamp
    estimated_resolution_time: int | None = None
    """Estimated minutes until resolution."""
    assigned_to: list[str] | None = None

    @property
    def is_active(self) -> bool:
        return self.status != IssueStatus.RESOLVED
