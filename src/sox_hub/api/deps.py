"""
sox_hub.api.deps

FastAPI dependency wiring for the API layer.

Responsibilities:
- Provide settings and request-scoped DB sessions.
- Resolve the calling user's record from the bearer token.
- Hand out the process-wide SharePoint list client when it is configured.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.status import HTTP_401_UNAUTHORIZED

from sox_hub.auth.deps import app_settings, get_principal
from sox_hub.auth.models import Principal
from sox_hub.db.models import User
from sox_hub.db.repositories.users import UserRepo
from sox_hub.directory.sharepoint_lists import SharePointLists
from sox_hub.errors import DirectoryNotConfiguredError
from sox_hub.settings import Settings


def settings_dep(settings: Settings = Depends(app_settings)) -> Settings:
    return settings


def sessionmaker_from_app(request: Request) -> async_sessionmaker[AsyncSession]:
    # Created on startup in `sox_hub.api.app.create_app`.
    return request.app.state.sessionmaker  # type: ignore[attr-defined]


async def db_session(
    session_factory: async_sessionmaker[AsyncSession] = Depends(sessionmaker_from_app),
) -> AsyncIterator[AsyncSession]:
    # Request-scoped DB session. Commit/rollback is managed explicitly by the service layer.
    async with session_factory() as session:
        yield session


async def current_user(
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(db_session),
) -> User:
    try:
        user_id = uuid.UUID(principal.subject)
    except ValueError as e:
        raise HTTPException(status_code=HTTP_401_UNAUTHORIZED, detail="Unknown user") from e
    user = await UserRepo(session).get(user_id)
    if user is None:
        # Deleted users keep valid tokens until expiry; refuse them here.
        raise HTTPException(status_code=HTTP_401_UNAUTHORIZED, detail="Unknown user")
    return user


def optional_lists(request: Request) -> SharePointLists | None:
    return getattr(request.app.state, "sharepoint", None)


def required_lists(lists: SharePointLists | None = Depends(optional_lists)) -> SharePointLists:
    if lists is None:
        raise DirectoryNotConfiguredError("SharePoint integration is not configured")
    return lists
