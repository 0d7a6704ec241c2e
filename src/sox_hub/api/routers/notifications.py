"""
sox_hub.api.routers.notifications

The caller's notification inbox.
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from sox_hub.api.deps import current_user, db_session
from sox_hub.api.schemas import NotificationResponse
from sox_hub.db.models import User
from sox_hub.services.notifications import NotificationService

router = APIRouter(prefix="/v1/notifications", tags=["notifications"])


@router.get("", response_model=list[NotificationResponse])
async def list_notifications(
    user: User = Depends(current_user),
    session: AsyncSession = Depends(db_session),
) -> list[NotificationResponse]:
    items = await NotificationService(session=session).list_for_user(user.id)
    return [NotificationResponse.model_validate(n) for n in items]


@router.get("/unread-count")
async def unread_count(
    user: User = Depends(current_user),
    session: AsyncSession = Depends(db_session),
) -> dict[str, int]:
    return {"unread": await NotificationService(session=session).unread_count(user.id)}


@router.post("/read-all")
async def mark_all_read(
    user: User = Depends(current_user),
    session: AsyncSession = Depends(db_session),
) -> dict[str, int]:
    return {"marked": await NotificationService(session=session).mark_all_read(user.id)}


@router.post("/{notification_id}/read", status_code=204)
async def mark_read(
    notification_id: uuid.UUID,
    user: User = Depends(current_user),
    session: AsyncSession = Depends(db_session),
) -> None:
    await NotificationService(session=session).mark_read(notification_id=notification_id, user_id=user.id)
