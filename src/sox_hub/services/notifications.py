"""
sox_hub.services.notifications

Per-user notification inbox.
"""

from __future__ import annotations

import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from sox_hub.db.models import Notification
from sox_hub.db.repositories.notifications import NotificationRepo
from sox_hub.errors import NotFoundError


class NotificationService:
    def __init__(self, *, session: AsyncSession) -> None:
        self._session = session
        self._repo = NotificationRepo(session)

    async def notify(self, *, user_id: uuid.UUID, message: str) -> Notification:
        # Staged only; the workflow that triggered it commits.
        return await self._repo.add(user_id=user_id, message=message)

    async def list_for_user(self, user_id: uuid.UUID) -> list[Notification]:
        return await self._repo.list_for_user(user_id)

    async def unread_count(self, user_id: uuid.UUID) -> int:
        return await self._repo.count_unread(user_id)

    async def mark_read(self, *, notification_id: uuid.UUID, user_id: uuid.UUID) -> None:
        if not await self._repo.mark_read(notification_id=notification_id, user_id=user_id):
            raise NotFoundError(f"Notification {notification_id} not found")
        await self._session.commit()

    async def mark_all_read(self, user_id: uuid.UUID) -> int:
        count = await self._repo.mark_all_read(user_id)
        await self._session.commit()
        return count
