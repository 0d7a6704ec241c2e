"""
sox_hub.db.repositories.change_requests

Repository for `ChangeRequest` entities.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from typing import Any

from sqlalchemy import desc, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from sox_hub.db.models import (
    OPEN_REQUEST_STATUSES,
    ChangeRequest,
    ChangeRequestStatus,
    ChangeRequestType,
)


class ChangeRequestRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        *,
        request_type: ChangeRequestType,
        requested_by: str,
        requested_by_id: uuid.UUID | None,
        changes: dict[str, Any],
        comments: str | None,
        control_id: uuid.UUID | None = None,
        control_code: str | None = None,
        control_name: str | None = None,
    ) -> ChangeRequest:
        cr = ChangeRequest(
            request_type=request_type,
            requested_by=requested_by,
            requested_by_id=requested_by_id,
            changes=changes,
            comments=comments,
            control_id=control_id,
            control_code=control_code,
            control_name=control_name,
            status=ChangeRequestStatus.pending,
        )
        self._session.add(cr)
        await self._session.flush()
        return cr

    async def get(self, request_id: uuid.UUID) -> ChangeRequest | None:
        return await self._session.get(ChangeRequest, request_id)

    async def get_for_update(self, request_id: uuid.UUID) -> ChangeRequest | None:
        # Review actions lock the row so two admins cannot decide the same request.
        return await self._session.get(ChangeRequest, request_id, with_for_update=True)

    async def list(
        self,
        *,
        statuses: Iterable[ChangeRequestStatus] | None = None,
        requested_by_id: uuid.UUID | None = None,
    ) -> list[ChangeRequest]:
        # Newest-first, matching the approval queue ordering.
        stmt = select(ChangeRequest)
        if statuses is not None:
            stmt = stmt.where(ChangeRequest.status.in_(list(statuses)))
        if requested_by_id is not None:
            stmt = stmt.where(ChangeRequest.requested_by_id == requested_by_id)
        stmt = stmt.order_by(desc(ChangeRequest.request_date))
        return list((await self._session.execute(stmt)).scalars().all())

    async def open_for_control(self, control_id: uuid.UUID) -> ChangeRequest | None:
        stmt = (
            select(ChangeRequest)
            .where(
                ChangeRequest.control_id == control_id,
                ChangeRequest.status.in_(list(OPEN_REQUEST_STATUSES)),
            )
            .order_by(desc(ChangeRequest.request_date))
            .limit(1)
        )
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def list_touching_control(
        self, *, control_id: uuid.UUID, control_code: str
    ) -> list[ChangeRequest]:
        # Creation proposals carry the proposed code inside `changes`; JSON lookups are
        # dialect-specific, so those are narrowed in Python.
        stmt = select(ChangeRequest).where(
            or_(
                ChangeRequest.control_id == control_id,
                ChangeRequest.control_code == control_code,
                ChangeRequest.request_type == ChangeRequestType.create,
            )
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [
            cr
            for cr in rows
            if cr.control_id == control_id
            or cr.control_code == control_code
            or (cr.changes or {}).get("control_code") == control_code
        ]

    async def count_open(self) -> int:
        stmt = (
            select(func.count())
            .select_from(ChangeRequest)
            .where(ChangeRequest.status.in_(list(OPEN_REQUEST_STATUSES)))
        )
        return int((await self._session.execute(stmt)).scalar_one())
