"""
sox_hub.api.routers.dev_auth

Development login: exchanges a registered email for a session token.
"""

from __future__ import annotations

from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.status import HTTP_404_NOT_FOUND

from sox_hub.api.deps import db_session, settings_dep
from sox_hub.api.schemas import UserResponse
from sox_hub.auth.tokens import SessionTokens
from sox_hub.services.access import AccessService
from sox_hub.settings import Settings

router = APIRouter(prefix="/v1/dev", tags=["dev"])


class DevLoginRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    ttl_minutes: int = Field(default=60, ge=1, le=24 * 60)


class DevLoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse


@router.post("/login", response_model=DevLoginResponse)
async def dev_login(
    body: DevLoginRequest,
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(settings_dep),
) -> DevLoginResponse:
    # Stand-in for the identity provider; never exposed in prod.
    if settings.env == "prod":
        raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail="Not found")

    user = await AccessService(session=session).login(body.email)
    token = SessionTokens.from_settings(settings).issue(
        user_id=str(user.id),
        name=user.name,
        roles=list(user.roles or []),
        ttl=timedelta(minutes=body.ttl_minutes),
    )
    return DevLoginResponse(access_token=token, user=UserResponse.model_validate(user))
