"""Local, observable copy of the shared stage document.

Every mutation builds a new :class:`Snapshot` and notifies listeners
synchronously. The sync agent subscribes here to decide when to send.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from stagesync.models import Crew, CustomStatus, Equipment, EquipmentType, Issue, IssueStatus, Position, Snapshot, crew_for

_logger = logging.getLogger(__name__)

DocumentListener = Callable[[Snapshot], None]


def _now_ms() -> int:
    """Current epoch timestamp in milliseconds."""
    return int(time.time() * 1000)


class StageDocument:
    """Mutable holder for one :class:`Snapshot`."""

    def __init__(
        self,
        snapshot: Snapshot | None = None,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._snapshot = snapshot if snapshot is not None else Snapshot()
        self._clock = clock
        self._listeners: list[DocumentListener] = []

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    @property
    def equipment(self) -> list[Equipment]:
        return list(self._snapshot.equipment)

    @property
    def issues(self) -> list[Issue]:
        return list(self._snapshot.issues)

    def subscribe(self, listener: DocumentListener) -> Callable[[], None]:
        """Register *listener*; returns a callable that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def replace(self, snapshot: Snapshot) -> None:
        """Swap in *snapshot* wholesale and notify listeners."""
        self._snapshot = snapshot
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                _logger.exception("Document listener failed")

    def _set(self, *, equipment: list[Equipment] | None = None, issues: list[Issue] | None = None) -> None:
        self.replace(
            self._snapshot.model_copy(
                update={
                    "equipment": equipment if equipment is not None else list(self._snapshot.equipment),
                    "issues": issues if issues is not None else list(self._snapshot.issues),
                }
            )
        )

    # ------------------------------------------------------------------
    # Equipment
    # ------------------------------------------------------------------

    def place_equipment(
        self,
        equipment_type: EquipmentType | str,
        label: str,
        position: Position | tuple[float, float],
        *,
        icon: str | None = None,
    ) -> Equipment:
        """Add a new piece of equipment at *position* (0..1 on each axis)."""
        kind = EquipmentType(equipment_type)
        if not isinstance(position, Position):
            position = Position(x=position[0], y=position[1])
        item = Equipment(
            id=f"{kind.value}-{_now_ms()}",
            type=kind,
            label=label,
            position=position,
            status=IssueStatus.RESOLVED,
            crew=crew_for(kind),
            icon=icon,
        )
        self._set(equipment=[*self._snapshot.equipment, item])
        return item

    def remove_equipment(self, equipment_id: str) -> None:
        """Remove a piece of equipment together with every issue reported on it."""
        self._set(
            equipment=[eq for eq in self._snapshot.equipment if eq.id != equipment_id],
            issues=[issue for issue in self._snapshot.issues if issue.equipment_id != equipment_id],
        )

    # ------------------------------------------------------------------
    # Issues
    # ------------------------------------------------------------------

    def save_issue(
        self,
        *,
        equipment_id: str,
        title: str,
        status: IssueStatus | str,
        reported_by: str,
        description: str | None = None,
        custom_status: CustomStatus | None = None,
        estimated_resolution_time: int | None = None,
        assigned_to: list[str] | None = None,
        existing_id: str | None = None,
    ) -> Issue:
        """Create an issue, or update the one with *existing_id*.

        When an update resolves the issue, *reported_by* (the acting member)
        is dropped from its assignees. The owning equipment's status follows
        the issue's status.
        """
        issue_status = IssueStatus(status)
        fields: dict[str, Any] = {
            "title": title,
            "description": description,
            "status": issue_status,
            "custom_status": custom_status if issue_status == IssueStatus.CUSTOM else None,
            "estimated_resolution_time": estimated_resolution_time or 0,
        }

        existing = self._find_issue(existing_id) if existing_id else None
        if existing is not None:
            if issue_status == IssueStatus.RESOLVED:
                fields["assigned_to"] = [member for member in assigned_to or [] if member != reported_by]
            else:
                fields["assigned_to"] = assigned_to
            saved = existing.model_copy(update=fields)
            issues = [saved if issue.id == existing.id else issue for issue in self._snapshot.issues]
        else:
            label = next((eq.label for eq in self._snapshot.equipment if eq.id == equipment_id), "")
            saved = Issue(
                id=f"issue-{_now_ms()}",
                equipment_id=equipment_id,
                equipment_label=label,
                reported_by=reported_by,
                reported_at=self._clock(),
                assigned_to=assigned_to,
                **fields,
            )
            issues = [*self._snapshot.issues, saved]

        equipment = [
            eq.model_copy(update={"status": issue_status}) if eq.id == equipment_id else eq
            for eq in self._snapshot.equipment
        ]
        self._set(equipment=equipment, issues=issues)
        return saved

    def rename_member(self, old_id: str, new_id: str) -> None:
        """Rewrite a member id wherever issues reference it."""
        if old_id == new_id:
            return
        issues = [
            issue.model_copy(
                update={
                    "reported_by": new_id if issue.reported_by == old_id else issue.reported_by,
                    "assigned_to": (
                        [new_id if member == old_id else member for member in issue.assigned_to]
                        if issue.assigned_to is not None
                        else None
                    ),
                }
            )
            for issue in self._snapshot.issues
        ]
        self._set(issues=issues)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _find_issue(self, issue_id: str) -> Issue | None:
        return next((issue for issue in self._snapshot.issues if issue.id == issue_id), None)

    def active_issues(self) -> list[Issue]:
        return [issue for issue in self._snapshot.issues if issue.is_active]

    def open_issue_for(self, equipment_id: str) -> Issue | None:
        return next((issue for issue in self.active_issues() if issue.equipment_id == equipment_id), None)

    def assigned_issues(self, member_id: str) -> list[Issue]:
        return [issue for issue in self.active_issues() if member_id in (issue.assigned_to or [])]

    def members_with_tasks(self) -> list[str]:
        """Members assigned to at least one active issue, in first-seen order."""
        seen: dict[str, None] = {}
        for issue in self.active_issues():
            for member in issue.assigned_to or []:
                seen.setdefault(member, None)
        return list(seen)

    def equipment_for_crew(self, crew: Crew | str) -> list[Equipment]:
        wanted = Crew(crew)
        return [eq for eq in self._snapshot.equipment if eq.crew == wanted]
