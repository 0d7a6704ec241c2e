"""
sox_hub.api.routers.directory

SharePoint integration endpoints (admin only).

Responsibilities:
- Inspect list columns and add new columns to the controls list.
- Push template rows straight onto the controls list (bulk add).
- Read the history list as SharePoint holds it.
- Pull controls and users from the lists into the local registry.
- Search the tenant directory when onboarding users.
"""

from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from sox_hub.api.deps import db_session, required_lists
from sox_hub.auth.deps import get_principal, require_roles
from sox_hub.auth.models import ROLE_ADMIN, Principal
from sox_hub.db.models import ChangeRequestStatus, ChangeRequestType
from sox_hub.directory.sharepoint_lists import SharePointLists
from sox_hub.services.directory_sync import DirectorySyncService, SyncResult

router = APIRouter(
    prefix="/v1/directory",
    tags=["directory"],
    dependencies=[Depends(require_roles(ROLE_ADMIN))],
)


class ColumnResponse(BaseModel):
    display_name: str
    internal_name: str
    type: str


class AddColumnRequest(BaseModel):
    display_name: str = Field(min_length=2, max_length=255)
    type: Literal["text", "note", "number", "boolean"]


class SyncResponse(BaseModel):
    created: int
    updated: int
    unchanged: int
    errors: list[dict[str, str]]


class BulkAddRequest(BaseModel):
    rows: list[dict[str, Any]] = Field(min_length=1)


class BulkAddResponse(BaseModel):
    controls_added: int
    errors: list[dict[str, str]]


class ListedChangeRequestResponse(BaseModel):
    request_ref: str
    sharepoint_item_id: str
    control_code: str | None
    control_name: str | None
    request_type: ChangeRequestType
    requested_by: str
    request_date: str | None
    status: ChangeRequestStatus
    comments: str
    changes: dict[str, Any]
    reviewed_by: str | None
    review_date: str | None
    admin_feedback: str


class TenantUserResponse(BaseModel):
    id: str
    name: str
    email: str | None


def _sync_response(r: SyncResult) -> SyncResponse:
    return SyncResponse(created=r.created, updated=r.updated, unchanged=r.unchanged, errors=r.errors)


@router.get("/columns/{list_kind}", response_model=list[ColumnResponse])
async def list_columns(
    list_kind: Literal["controls", "history", "access"],
    lists: SharePointLists = Depends(required_lists),
) -> list[ColumnResponse]:
    if list_kind == "controls":
        cols = await lists.control_columns()
    elif list_kind == "history":
        cols = await lists.history_columns()
    else:
        cols = await lists.access_columns()
    return [ColumnResponse(display_name=c.display_name, internal_name=c.internal_name, type=c.type) for c in cols]


@router.post("/columns", status_code=201)
async def add_column(
    body: AddColumnRequest,
    lists: SharePointLists = Depends(required_lists),
) -> dict[str, str]:
    created = await lists.add_column(display_name=body.display_name, kind=body.type)
    return {"id": str(created.get("id", "")), "internal_name": str(created.get("name", ""))}


@router.post("/sync/controls", response_model=SyncResponse)
async def sync_controls(
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(db_session),
    lists: SharePointLists = Depends(required_lists),
) -> SyncResponse:
    result = await DirectorySyncService(session=session, lists=lists).import_controls(actor=principal.name)
    return _sync_response(result)


@router.post("/sync/users", response_model=SyncResponse)
async def sync_users(
    session: AsyncSession = Depends(db_session),
    lists: SharePointLists = Depends(required_lists),
) -> SyncResponse:
    return _sync_response(await DirectorySyncService(session=session, lists=lists).import_users())


@router.get("/tenant-users", response_model=list[TenantUserResponse])
async def search_tenant_users(
    q: str = Query(min_length=1, max_length=128),
    lists: SharePointLists = Depends(required_lists),
) -> list[TenantUserResponse]:
    users = await lists.search_tenant_users(q)
    return [TenantUserResponse(id=u.id, name=u.name, email=u.email) for u in users]


@router.post("/controls/bulk", response_model=BulkAddResponse)
async def bulk_add_controls(
    body: BulkAddRequest,
    lists: SharePointLists = Depends(required_lists),
) -> BulkAddResponse:
    # Rows are keyed by the import template headers; failures are reported per row.
    added, errors = await lists.add_controls_bulk(body.rows)
    return BulkAddResponse(controls_added=added, errors=errors)


@router.get("/change-requests", response_model=list[ListedChangeRequestResponse])
async def list_directory_change_requests(
    lists: SharePointLists = Depends(required_lists),
) -> list[ListedChangeRequestResponse]:
    return [
        ListedChangeRequestResponse(
            request_ref=r.request_ref,
            sharepoint_item_id=r.sharepoint_item_id,
            control_code=r.control_code,
            control_name=r.control_name,
            request_type=r.request_type,
            requested_by=r.requested_by,
            request_date=r.request_date,
            status=r.status,
            comments=r.comments,
            changes=r.changes,
            reviewed_by=r.reviewed_by,
            review_date=r.review_date,
            admin_feedback=r.admin_feedback,
        )
        for r in await lists.fetch_change_requests()
    ]
