"""
sox_hub.services.version_history

Read side of the version history log.

Responsibilities:
- Per-control and matrix-wide history, newest first.
- Unified per-control timeline merging history rows with change request events.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from sox_hub.db.models import ChangeRequestStatus, VersionHistoryEntry
from sox_hub.db.repositories.change_requests import ChangeRequestRepo
from sox_hub.db.repositories.controls import ControlRepo
from sox_hub.db.repositories.version_history import VersionHistoryRepo
from sox_hub.errors import NotFoundError


@dataclass(frozen=True, slots=True)
class TimelineEvent:
    kind: str
    date: datetime
    actor: str
    summary: str
    change_request_id: uuid.UUID | None = None
    details: dict[str, Any] = field(default_factory=dict)


_REQUEST_EVENT_KINDS = {
    ChangeRequestStatus.pending: "change_request_submitted",
    ChangeRequestStatus.in_review: "change_request_submitted",
    ChangeRequestStatus.rejected: "change_request_rejected",
    ChangeRequestStatus.awaiting_feedback: "change_request_feedback_requested",
}


def _is_creation(entry: VersionHistoryEntry) -> bool:
    return not entry.previous_values and "control_code" in (entry.new_values or {})


class VersionHistoryService:
    def __init__(self, *, session: AsyncSession) -> None:
        self._history = VersionHistoryRepo(session)
        self._controls = ControlRepo(session)
        self._requests = ChangeRequestRepo(session)

    async def history_for_control(self, control_id: uuid.UUID) -> list[VersionHistoryEntry]:
        if await self._controls.get(control_id) is None:
            raise NotFoundError(f"Control {control_id} not found")
        return await self._history.list_for_control(control_id)

    async def recent(self, *, limit: int = 200) -> list[VersionHistoryEntry]:
        return await self._history.recent(limit=limit)

    async def timeline(self, control_id: uuid.UUID) -> list[TimelineEvent]:
        control = await self._controls.get(control_id)
        if control is None:
            raise NotFoundError(f"Control {control_id} not found")

        entries = await self._history.list_for_control(control_id)
        requests = await self._requests.list_touching_control(
            control_id=control.id, control_code=control.control_code
        )
        by_id = {cr.id: cr for cr in requests}

        events: list[TimelineEvent] = []
        covered: set[uuid.UUID] = set()
        for e in entries:
            linked = by_id.get(e.related_change_request_id) if e.related_change_request_id else None
            if linked is not None and linked.status == ChangeRequestStatus.approved:
                kind = "change_request_approved"
                covered.add(linked.id)
            elif _is_creation(e):
                kind = "control_created"
            else:
                kind = "control_updated"
            events.append(
                TimelineEvent(
                    kind=kind,
                    date=e.change_date,
                    actor=e.changed_by,
                    summary=e.summary,
                    change_request_id=e.related_change_request_id,
                    details={"previous_values": e.previous_values, "new_values": e.new_values},
                )
            )

        for cr in requests:
            kind = _REQUEST_EVENT_KINDS.get(cr.status)
            if cr.id in covered or kind is None:
                continue
            decided = cr.status in (ChangeRequestStatus.rejected, ChangeRequestStatus.awaiting_feedback)
            events.append(
                TimelineEvent(
                    kind=kind,
                    date=(cr.review_date or cr.request_date) if decided else cr.request_date,
                    actor=(cr.reviewed_by or cr.requested_by) if decided else cr.requested_by,
                    summary=(cr.admin_feedback or cr.comments or "") if decided else (cr.comments or ""),
                    change_request_id=cr.id,
                    details={"changes": cr.changes, "status": cr.status.value},
                )
            )

        events.sort(key=lambda ev: ev.date, reverse=True)
        return events
