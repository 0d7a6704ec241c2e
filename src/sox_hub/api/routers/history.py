"""
sox_hub.api.routers.history

Version history endpoints: the matrix-wide recent log, per-control history and the
unified control timeline.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from sox_hub.api.deps import db_session
from sox_hub.api.schemas import HistoryEntryResponse
from sox_hub.auth.deps import require_roles
from sox_hub.auth.models import ROLE_CONTROL_OWNER
from sox_hub.services.version_history import VersionHistoryService

router = APIRouter(
    prefix="/v1",
    tags=["history"],
    dependencies=[Depends(require_roles(ROLE_CONTROL_OWNER))],
)


class TimelineEventResponse(BaseModel):
    kind: str
    date: datetime
    actor: str
    summary: str
    change_request_id: uuid.UUID | None
    details: dict[str, Any]


@router.get("/history", response_model=list[HistoryEntryResponse])
async def recent_history(
    limit: int = Query(default=200, ge=1, le=1000),
    session: AsyncSession = Depends(db_session),
) -> list[HistoryEntryResponse]:
    entries = await VersionHistoryService(session=session).recent(limit=limit)
    return [HistoryEntryResponse.model_validate(e) for e in entries]


@router.get("/controls/{control_id}/history", response_model=list[HistoryEntryResponse])
async def control_history(
    control_id: uuid.UUID,
    session: AsyncSession = Depends(db_session),
) -> list[HistoryEntryResponse]:
    entries = await VersionHistoryService(session=session).history_for_control(control_id)
    return [HistoryEntryResponse.model_validate(e) for e in entries]


@router.get("/controls/{control_id}/timeline", response_model=list[TimelineEventResponse])
async def control_timeline(
    control_id: uuid.UUID,
    session: AsyncSession = Depends(db_session),
) -> list[TimelineEventResponse]:
    events = await VersionHistoryService(session=session).timeline(control_id)
    return [
        TimelineEventResponse(
            kind=ev.kind,
            date=ev.date,
            actor=ev.actor,
            summary=ev.summary,
            change_request_id=ev.change_request_id,
            details=ev.details,
        )
        for ev in events
    ]
