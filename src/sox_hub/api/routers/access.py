"""
sox_hub.api.routers.access

Access management endpoints.

Responsibilities:
- Admin user administration (add, toggle role, delete, assign owned controls).
- Self-service profile switching for the signed-in user.
"""

from __future__ import annotations

import uuid
from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from sox_hub.api.deps import current_user, db_session, optional_lists
from sox_hub.api.schemas import UserResponse
from sox_hub.auth.deps import get_principal, require_roles
from sox_hub.auth.models import ROLE_ADMIN, Principal
from sox_hub.db.models import User, UserProfile
from sox_hub.directory.sharepoint_lists import SharePointLists
from sox_hub.services.access import AccessService

router = APIRouter(prefix="/v1", tags=["access"])


class AddUserRequest(BaseModel):
    name: str = Field(min_length=1, max_length=256)
    email: str = Field(min_length=3, max_length=320)


class ToggleRoleRequest(BaseModel):
    role: Literal["admin", "control_owner"]


class AssignControlsRequest(BaseModel):
    control_ids: list[uuid.UUID]


class ProfileRequest(BaseModel):
    profile: UserProfile


@router.get("/me", response_model=UserResponse)
async def me(user: User = Depends(current_user)) -> UserResponse:
    return UserResponse.model_validate(user)


@router.put("/me/profile", response_model=UserResponse)
async def switch_profile(
    body: ProfileRequest,
    user: User = Depends(current_user),
    session: AsyncSession = Depends(db_session),
) -> UserResponse:
    updated = await AccessService(session=session).set_active_profile(user_id=user.id, profile=body.profile)
    return UserResponse.model_validate(updated)


@router.get(
    "/users",
    response_model=list[UserResponse],
    dependencies=[Depends(require_roles(ROLE_ADMIN))],
)
async def list_users(session: AsyncSession = Depends(db_session)) -> list[UserResponse]:
    return [UserResponse.model_validate(u) for u in await AccessService(session=session).list_users()]


@router.post(
    "/users",
    response_model=UserResponse,
    status_code=201,
    dependencies=[Depends(require_roles(ROLE_ADMIN))],
)
async def add_user(
    body: AddUserRequest,
    session: AsyncSession = Depends(db_session),
    lists: SharePointLists | None = Depends(optional_lists),
) -> UserResponse:
    user = await AccessService(session=session, lists=lists).add_user(name=body.name, email=body.email)
    return UserResponse.model_validate(user)


@router.post(
    "/users/{user_id}/roles",
    response_model=UserResponse,
    dependencies=[Depends(require_roles(ROLE_ADMIN))],
)
async def toggle_role(
    user_id: uuid.UUID,
    body: ToggleRoleRequest,
    session: AsyncSession = Depends(db_session),
    lists: SharePointLists | None = Depends(optional_lists),
) -> UserResponse:
    user = await AccessService(session=session, lists=lists).toggle_role(user_id=user_id, role=body.role)
    return UserResponse.model_validate(user)


@router.put(
    "/users/{user_id}/controls",
    response_model=UserResponse,
    dependencies=[Depends(require_roles(ROLE_ADMIN))],
)
async def assign_controls(
    user_id: uuid.UUID,
    body: AssignControlsRequest,
    session: AsyncSession = Depends(db_session),
) -> UserResponse:
    user = await AccessService(session=session).assign_controls(user_id=user_id, control_ids=body.control_ids)
    return UserResponse.model_validate(user)


@router.delete(
    "/users/{user_id}",
    status_code=204,
    dependencies=[Depends(require_roles(ROLE_ADMIN))],
)
async def delete_user(
    user_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(db_session),
    lists: SharePointLists | None = Depends(optional_lists),
) -> None:
    await AccessService(session=session, lists=lists).delete_user(user_id=user_id, actor=principal)
