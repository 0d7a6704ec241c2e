"""
sox_hub.services.access

Access management service (transaction + persistence owner).

Responsibilities:
- Maintain the user list and each user's role set.
- Protect the role invariants: the last admin stays an admin and nobody ends
  up with zero roles.
- Resolve the active profile at login and when users switch views.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable

from sqlalchemy import delete, update
from sqlalchemy.ext.asyncio import AsyncSession

from sox_hub.auth.models import KNOWN_ROLES, ROLE_ADMIN, ROLE_CONTROL_OWNER, Principal
from sox_hub.db.models import ChangeRequest, Notification, User, UserProfile
from sox_hub.db.repositories.controls import ControlRepo
from sox_hub.db.repositories.users import UserRepo
from sox_hub.directory.sharepoint_lists import SharePointLists
from sox_hub.errors import (
    ConflictError,
    InvalidRequestError,
    InvariantViolationError,
    NotFoundError,
)
from sox_hub.observability.logging import get_logger

log = get_logger(__name__)


def primary_profile(roles: Iterable[str]) -> UserProfile:
    return UserProfile.admin if ROLE_ADMIN in set(roles) else UserProfile.control_owner


class AccessService:
    def __init__(self, *, session: AsyncSession, lists: SharePointLists | None = None) -> None:
        self._session = session
        self._lists = lists
        self._users = UserRepo(session)
        self._controls = ControlRepo(session)

    async def _get(self, user_id: uuid.UUID, *, for_update: bool = False) -> User:
        user = await (self._users.get_for_update(user_id) if for_update else self._users.get(user_id))
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        return user

    async def list_users(self) -> list[User]:
        return await self._users.list()

    async def get_user(self, user_id: uuid.UUID) -> User:
        return await self._get(user_id)

    async def add_user(self, *, name: str, email: str) -> User:
        name = (name or "").strip()
        email = (email or "").strip().lower()
        if not name:
            raise InvalidRequestError("Name is required")
        if "@" not in email:
            raise InvalidRequestError("A valid email is required")
        if await self._users.get_by_email(email) is not None:
            raise ConflictError(f"A user with email {email} already exists")

        user = await self._users.create(
            name=name,
            email=email,
            roles=[ROLE_CONTROL_OWNER],
            active_profile=UserProfile.control_owner,
        )
        if self._lists is not None:
            mirrored = await self._lists.add_access_user(name=name, email=email)
            user.sharepoint_item_id = mirrored.sharepoint_item_id
        await self._session.commit()
        log.info("user_added", user_id=str(user.id))
        return user

    async def toggle_role(self, *, user_id: uuid.UUID, role: str) -> User:
        if role not in KNOWN_ROLES:
            raise InvalidRequestError(f"Unknown role '{role}'")
        user = await self._get(user_id, for_update=True)
        roles = list(user.roles or [])

        if role in roles:
            if role == ROLE_ADMIN and await self._users.count_admins() <= 1:
                raise InvariantViolationError("Cannot remove the admin role from the last administrator")
            if len(roles) == 1:
                raise InvariantViolationError("A user must keep at least one role")
            roles.remove(role)
        else:
            roles.append(role)

        # Reassign so the JSON column is flagged dirty.
        user.roles = sorted(roles)
        user.active_profile = primary_profile(roles)

        if self._lists is not None and user.sharepoint_item_id:
            await self._lists.update_access_roles(
                user.sharepoint_item_id,
                is_admin=ROLE_ADMIN in roles,
                is_control_owner=ROLE_CONTROL_OWNER in roles,
            )
        await self._session.commit()
        log.info("user_roles_changed", user_id=str(user.id), roles=user.roles)
        return user

    async def delete_user(self, *, user_id: uuid.UUID, actor: Principal) -> None:
        if str(user_id) == actor.subject:
            raise InvariantViolationError("You cannot delete your own account")
        user = await self._get(user_id, for_update=True)
        if ROLE_ADMIN in (user.roles or []) and await self._users.count_admins() <= 1:
            raise InvariantViolationError("Cannot delete the last administrator")

        # Requests keep the requester's display name; only the link is dropped.
        await self._session.execute(
            update(ChangeRequest).where(ChangeRequest.requested_by_id == user.id).values(requested_by_id=None)
        )
        await self._session.execute(delete(Notification).where(Notification.user_id == user.id))
        if self._lists is not None and user.sharepoint_item_id:
            await self._lists.delete_access_user(user.sharepoint_item_id)
        await self._users.delete(user)
        await self._session.commit()
        log.info("user_deleted", user_id=str(user_id))

    async def set_active_profile(self, *, user_id: uuid.UUID, profile: UserProfile) -> User:
        user = await self._get(user_id, for_update=True)
        roles = user.roles or []
        wanted = ROLE_ADMIN if profile == UserProfile.admin else ROLE_CONTROL_OWNER
        user.active_profile = profile if wanted in roles else primary_profile(roles)
        await self._session.commit()
        return user

    async def login(self, email: str) -> User:
        user = await self._users.get_by_email(email or "")
        if user is None:
            raise NotFoundError("No user is registered with that email")
        user.active_profile = primary_profile(user.roles or [])
        await self._session.commit()
        log.info("user_login", user_id=str(user.id))
        return user

    async def assign_controls(self, *, user_id: uuid.UUID, control_ids: list[uuid.UUID]) -> User:
        user = await self._get(user_id, for_update=True)
        found = {c.id for c in await self._controls.list_by_ids(control_ids)}
        missing = [str(cid) for cid in control_ids if cid not in found]
        if missing:
            raise NotFoundError(f"Controls not found: {', '.join(missing)}")
        user.controls_owned = [str(cid) for cid in dict.fromkeys(control_ids)]
        await self._session.commit()
        return user
