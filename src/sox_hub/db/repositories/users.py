"""
sox_hub.db.repositories.users

User records: lookup by id or (case-insensitive) email, and admin counting.
"""

from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sox_hub.auth.models import ROLE_ADMIN
from sox_hub.db.models import User, UserProfile


class UserRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        *,
        name: str,
        email: str,
        roles: list[str],
        active_profile: UserProfile,
        controls_owned: list[str] | None = None,
        sharepoint_item_id: str | None = None,
    ) -> User:
        user = User(
            name=name,
            email=email.strip().lower(),
            roles=roles,
            active_profile=active_profile,
            controls_owned=controls_owned or [],
            sharepoint_item_id=sharepoint_item_id,
        )
        self._session.add(user)
        await self._session.flush()
        return user

    async def get(self, user_id: uuid.UUID) -> User | None:
        return await self._session.get(User, user_id)

    async def get_for_update(self, user_id: uuid.UUID) -> User | None:
        return await self._session.get(User, user_id, with_for_update=True)

    async def get_by_email(self, email: str) -> User | None:
        stmt = select(User).where(User.email == email.strip().lower())
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def list(self) -> list[User]:
        stmt = select(User).order_by(User.name)
        return list((await self._session.execute(stmt)).scalars().all())

    async def count_admins(self) -> int:
        # Roles live in a JSON column; counting in Python keeps this portable.
        return sum(1 for u in await self.list() if ROLE_ADMIN in (u.roles or []))

    async def delete(self, user: User) -> None:
        await self._session.delete(user)
        await self._session.flush()
