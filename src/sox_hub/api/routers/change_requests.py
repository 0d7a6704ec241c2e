"""
sox_hub.api.routers.change_requests

Change request endpoints.

Responsibilities:
- Submit update / creation proposals and revise them after feedback.
- Pending queue (scoped by the caller's active profile) and field diffs.
- Admin review actions.
"""

from __future__ import annotations

import uuid
from typing import Any, Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from sox_hub.api.deps import current_user, db_session, optional_lists
from sox_hub.api.schemas import ChangeRequestResponse
from sox_hub.auth.deps import get_principal, require_roles
from sox_hub.auth.models import ROLE_ADMIN, ROLE_CONTROL_OWNER, Principal
from sox_hub.db.models import ChangeRequestStatus, User
from sox_hub.directory.sharepoint_lists import SharePointLists
from sox_hub.services.change_requests import ChangeRequestService

router = APIRouter(prefix="/v1/change-requests", tags=["change-requests"])


class UpdateRequestBody(BaseModel):
    control_id: uuid.UUID
    changes: dict[str, Any]
    comments: str | None = Field(default=None, max_length=4000)


class CreationRequestBody(BaseModel):
    proposed_name: str
    reason: str
    fields: dict[str, Any] = Field(default_factory=dict)


class ReviseBody(BaseModel):
    changes: dict[str, Any] = Field(default_factory=dict)
    comments: str | None = Field(default=None, max_length=4000)


class ReviewBody(BaseModel):
    action: Literal["start_review", "approve", "reject", "request_changes", "acknowledge"]
    feedback: str | None = Field(default=None, max_length=4000)


class FieldDiffResponse(BaseModel):
    field: str
    old_value: Any
    new_value: Any


def _service(session: AsyncSession, lists: SharePointLists | None) -> ChangeRequestService:
    return ChangeRequestService(session=session, lists=lists)


@router.post(
    "",
    response_model=ChangeRequestResponse,
    status_code=201,
    dependencies=[Depends(require_roles(ROLE_CONTROL_OWNER))],
)
async def submit_update(
    body: UpdateRequestBody,
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(db_session),
    lists: SharePointLists | None = Depends(optional_lists),
) -> ChangeRequestResponse:
    cr = await _service(session, lists).submit_update(
        control_id=body.control_id,
        changes=body.changes,
        comments=body.comments,
        requester=principal,
    )
    return ChangeRequestResponse.model_validate(cr)


@router.post(
    "/new-control",
    response_model=ChangeRequestResponse,
    status_code=201,
    dependencies=[Depends(require_roles(ROLE_CONTROL_OWNER))],
)
async def submit_creation(
    body: CreationRequestBody,
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(db_session),
    lists: SharePointLists | None = Depends(optional_lists),
) -> ChangeRequestResponse:
    cr = await _service(session, lists).submit_creation(
        proposed_name=body.proposed_name,
        reason=body.reason,
        requester=principal,
        fields=body.fields,
    )
    return ChangeRequestResponse.model_validate(cr)


@router.get(
    "",
    response_model=list[ChangeRequestResponse],
    dependencies=[Depends(require_roles(ROLE_ADMIN))],
)
async def list_requests(
    status: ChangeRequestStatus | None = None,
    session: AsyncSession = Depends(db_session),
) -> list[ChangeRequestResponse]:
    requests = await _service(session, None).list_requests(statuses=[status] if status else None)
    return [ChangeRequestResponse.model_validate(cr) for cr in requests]


@router.get("/pending", response_model=list[ChangeRequestResponse])
async def list_pending(
    user: User = Depends(current_user),
    session: AsyncSession = Depends(db_session),
) -> list[ChangeRequestResponse]:
    requests = await _service(session, None).list_pending(user)
    return [ChangeRequestResponse.model_validate(cr) for cr in requests]


@router.get(
    "/{request_id}",
    response_model=ChangeRequestResponse,
    dependencies=[Depends(require_roles(ROLE_CONTROL_OWNER))],
)
async def get_request(
    request_id: uuid.UUID,
    session: AsyncSession = Depends(db_session),
) -> ChangeRequestResponse:
    return ChangeRequestResponse.model_validate(await _service(session, None).get_request(request_id))


@router.get(
    "/{request_id}/diff",
    response_model=list[FieldDiffResponse],
    dependencies=[Depends(require_roles(ROLE_CONTROL_OWNER))],
)
async def request_diff(
    request_id: uuid.UUID,
    session: AsyncSession = Depends(db_session),
) -> list[FieldDiffResponse]:
    diffs = await _service(session, None).diff(request_id)
    return [FieldDiffResponse(field=d.field, old_value=d.old_value, new_value=d.new_value) for d in diffs]


@router.post(
    "/{request_id}/review",
    response_model=ChangeRequestResponse,
    dependencies=[Depends(require_roles(ROLE_ADMIN))],
)
async def review(
    request_id: uuid.UUID,
    body: ReviewBody,
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(db_session),
    lists: SharePointLists | None = Depends(optional_lists),
) -> ChangeRequestResponse:
    svc = _service(session, lists)
    if body.action == "start_review":
        cr = await svc.start_review(request_id=request_id, reviewer=principal)
    elif body.action == "approve":
        cr = await svc.approve(request_id=request_id, reviewer=principal, feedback=body.feedback)
    elif body.action == "reject":
        cr = await svc.reject(request_id=request_id, reviewer=principal, feedback=body.feedback or "")
    elif body.action == "request_changes":
        cr = await svc.request_changes(request_id=request_id, reviewer=principal, feedback=body.feedback or "")
    else:
        cr = await svc.acknowledge(request_id=request_id, reviewer=principal, feedback=body.feedback)
    return ChangeRequestResponse.model_validate(cr)


@router.post(
    "/{request_id}/revise",
    response_model=ChangeRequestResponse,
    dependencies=[Depends(require_roles(ROLE_CONTROL_OWNER))],
)
async def revise(
    request_id: uuid.UUID,
    body: ReviseBody,
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(db_session),
    lists: SharePointLists | None = Depends(optional_lists),
) -> ChangeRequestResponse:
    cr = await _service(session, lists).revise(
        request_id=request_id,
        changes=body.changes,
        comments=body.comments,
        requester=principal,
    )
    return ChangeRequestResponse.model_validate(cr)
