"""
sox_hub.db.repositories.notifications

Per-user notification rows and their read flags.
"""

from __future__ import annotations

import uuid

from sqlalchemy import desc, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from sox_hub.db.models import Notification


class NotificationRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, *, user_id: uuid.UUID, message: str) -> Notification:
        n = Notification(user_id=user_id, message=message, read=False)
        self._session.add(n)
        await self._session.flush()
        return n

    async def list_for_user(self, user_id: uuid.UUID, *, limit: int = 100) -> list[Notification]:
        stmt = (
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(desc(Notification.created_at))
            .limit(limit)
        )
        return list((await self._session.execute(stmt)).scalars().all())

    async def count_unread(self, user_id: uuid.UUID) -> int:
        stmt = (
            select(func.count())
            .select_from(Notification)
            .where(Notification.user_id == user_id, Notification.read.is_(False))
        )
        return int((await self._session.execute(stmt)).scalar_one())

    async def mark_read(self, *, notification_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        n = await self._session.get(Notification, notification_id)
        if n is None or n.user_id != user_id:
            return False
        n.read = True
        await self._session.flush()
        return True

    async def mark_all_read(self, user_id: uuid.UUID) -> int:
        stmt = (
            update(Notification)
            .where(Notification.user_id == user_id, Notification.read.is_(False))
            .values(read=True)
        )
        result = await self._session.execute(stmt)
        return int(result.rowcount or 0)
