"""
sox_hub.db.repositories.version_history

Repository for `VersionHistoryEntry` entities.

Responsibilities:
- Append history rows alongside control mutations.
- Query history per control and across the matrix.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from sox_hub.db.models import VersionHistoryEntry


class VersionHistoryRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def append(
        self,
        *,
        control_id: uuid.UUID,
        changed_by: str,
        summary: str,
        previous_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
        related_change_request_id: uuid.UUID | None = None,
    ) -> VersionHistoryEntry:
        # History rows are append-only; this repository has no update/delete path.
        entry = VersionHistoryEntry(
            control_id=control_id,
            changed_by=changed_by,
            summary=summary,
            previous_values=previous_values or {},
            new_values=new_values or {},
            related_change_request_id=related_change_request_id,
        )
        self._session.add(entry)
        await self._session.flush()
        return entry

    async def list_for_control(self, control_id: uuid.UUID) -> list[VersionHistoryEntry]:
        stmt = (
            select(VersionHistoryEntry)
            .where(VersionHistoryEntry.control_id == control_id)
            .order_by(desc(VersionHistoryEntry.change_date))
        )
        return list((await self._session.execute(stmt)).scalars().all())

    async def recent(self, *, limit: int = 200) -> list[VersionHistoryEntry]:
        stmt = select(VersionHistoryEntry).order_by(desc(VersionHistoryEntry.change_date)).limit(limit)
        return list((await self._session.execute(stmt)).scalars().all())
