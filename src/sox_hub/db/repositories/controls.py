"""
sox_hub.db.repositories.controls

Repository for `Control` entities.

Responsibilities:
- Create and fetch controls by id or control code.
- Run the matrix filters (search, process, owner, ...) as SQL.
- Provide the aggregates used by the dashboard and filter pickers.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import InstrumentedAttribute

from sox_hub.db.models import Control, ControlStatus


@dataclass(frozen=True, slots=True)
class ControlFilters:
    search: str | None = None
    process: str | None = None
    sub_process: str | None = None
    owner: str | None = None
    responsible: str | None = None
    n3_responsible: str | None = None
    # None means "any status".
    status: ControlStatus | None = ControlStatus.active


class ControlRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, **fields: Any) -> Control:
        control = Control(**fields)
        self._session.add(control)
        await self._session.flush()
        return control

    async def get(self, control_id: uuid.UUID) -> Control | None:
        return await self._session.get(Control, control_id)

    async def get_for_update(self, control_id: uuid.UUID) -> Control | None:
        return await self._session.get(Control, control_id, with_for_update=True)

    async def get_by_code(self, control_code: str) -> Control | None:
        stmt = select(Control).where(Control.control_code == control_code)
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def list(self, filters: ControlFilters | None = None) -> list[Control]:
        f = filters or ControlFilters()
        stmt = select(Control)
        if f.status is not None:
            stmt = stmt.where(Control.status == f.status)
        if f.search:
            term = f"%{f.search.lower()}%"
            stmt = stmt.where(
                or_(
                    func.lower(Control.control_code).like(term),
                    func.lower(Control.name).like(term),
                    func.lower(Control.description).like(term),
                )
            )
        for column, value in (
            (Control.process, f.process),
            (Control.sub_process, f.sub_process),
            (Control.owner, f.owner),
            (Control.responsible, f.responsible),
            (Control.n3_responsible, f.n3_responsible),
        ):
            if value:
                stmt = stmt.where(column == value)
        stmt = stmt.order_by(Control.control_code)
        return list((await self._session.execute(stmt)).scalars().all())

    async def list_by_ids(
        self, control_ids: Iterable[uuid.UUID], *, status: ControlStatus | None = None
    ) -> list[Control]:
        ids = list(control_ids)
        if not ids:
            return []
        stmt = select(Control).where(Control.id.in_(ids))
        if status is not None:
            stmt = stmt.where(Control.status == status)
        stmt = stmt.order_by(Control.control_code)
        return list((await self._session.execute(stmt)).scalars().all())

    async def count(self, *, status: ControlStatus | None = None) -> int:
        stmt = select(func.count()).select_from(Control)
        if status is not None:
            stmt = stmt.where(Control.status == status)
        return int((await self._session.execute(stmt)).scalar_one())

    async def distinct_values(self, column: InstrumentedAttribute) -> list[str]:
        stmt = select(column).where(column.is_not(None), column != "").distinct().order_by(column)
        return [str(v) for v in (await self._session.execute(stmt)).scalars().all()]
