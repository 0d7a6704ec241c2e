"""
sox_hub.api.routers.controls

Control matrix endpoints.

Responsibilities:
- Filtered matrix listing, filter pickers and dashboard counters.
- Owner view ("my controls").
- Admin create / edit / bulk import.
"""

from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from sox_hub.api.deps import current_user, db_session, optional_lists
from sox_hub.api.schemas import ControlResponse
from sox_hub.auth.deps import get_principal, require_roles
from sox_hub.auth.models import ROLE_ADMIN, ROLE_CONTROL_OWNER, Principal
from sox_hub.db.models import User
from sox_hub.db.repositories.controls import ControlFilters
from sox_hub.directory.mapping import parse_control_status
from sox_hub.directory.sharepoint_lists import SharePointLists
from sox_hub.services.control_registry import ControlRegistry

router = APIRouter(prefix="/v1/controls", tags=["controls"])

ALL = "all"


def _opt(value: str | None) -> str | None:
    # "all" (any case) is the UI's "no filter" choice.
    if value is None or value.strip().lower() in ("", ALL):
        return None
    return value


class ControlCreateRequest(BaseModel):
    control_code: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=512)
    fields: dict[str, Any] = Field(default_factory=dict)


class ControlUpdateRequest(BaseModel):
    changes: dict[str, Any]


class BulkImportRequest(BaseModel):
    rows: list[dict[str, Any]]


class BulkImportResponse(BaseModel):
    controls_added: int
    errors: list[dict[str, str]]


class DashboardResponse(BaseModel):
    active_controls: int
    owners: int
    open_change_requests: int


@router.get(
    "",
    response_model=list[ControlResponse],
    dependencies=[Depends(require_roles(ROLE_CONTROL_OWNER))],
)
async def list_controls(
    search: str | None = None,
    process: str | None = None,
    sub_process: str | None = None,
    owner: str | None = None,
    responsible: str | None = None,
    n3_responsible: str | None = None,
    status: str = Query(default="active"),
    session: AsyncSession = Depends(db_session),
) -> list[ControlResponse]:
    filters = ControlFilters(
        search=_opt(search),
        process=_opt(process),
        sub_process=_opt(sub_process),
        owner=_opt(owner),
        responsible=_opt(responsible),
        n3_responsible=_opt(n3_responsible),
        status=parse_control_status(status) if _opt(status) else None,
    )
    controls = await ControlRegistry(session=session).list_controls(filters)
    return [ControlResponse.model_validate(c) for c in controls]


@router.get("/filter-options", dependencies=[Depends(require_roles(ROLE_CONTROL_OWNER))])
async def filter_options(session: AsyncSession = Depends(db_session)) -> dict[str, list[str]]:
    return await ControlRegistry(session=session).filter_options()


@router.get(
    "/summary",
    response_model=DashboardResponse,
    dependencies=[Depends(require_roles(ROLE_CONTROL_OWNER))],
)
async def dashboard_summary(session: AsyncSession = Depends(db_session)) -> DashboardResponse:
    s = await ControlRegistry(session=session).dashboard_summary()
    return DashboardResponse(
        active_controls=s.active_controls,
        owners=s.owners,
        open_change_requests=s.open_change_requests,
    )


@router.get("/mine", response_model=list[ControlResponse])
async def my_controls(
    user: User = Depends(current_user),
    session: AsyncSession = Depends(db_session),
) -> list[ControlResponse]:
    controls = await ControlRegistry(session=session).owned_controls(user)
    return [ControlResponse.model_validate(c) for c in controls]


@router.get("/import-template", dependencies=[Depends(require_roles(ROLE_ADMIN))])
async def import_template() -> dict[str, list[str]]:
    return {"headers": ControlRegistry.import_template()}


@router.post(
    "/import",
    response_model=BulkImportResponse,
    dependencies=[Depends(require_roles(ROLE_ADMIN))],
)
async def bulk_import(
    body: BulkImportRequest,
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(db_session),
) -> BulkImportResponse:
    result = await ControlRegistry(session=session).bulk_import(body.rows, actor=principal.name)
    return BulkImportResponse(controls_added=result.controls_added, errors=result.errors)


@router.post(
    "",
    response_model=ControlResponse,
    status_code=201,
    dependencies=[Depends(require_roles(ROLE_ADMIN))],
)
async def create_control(
    body: ControlCreateRequest,
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(db_session),
) -> ControlResponse:
    fields = {**body.fields, "control_code": body.control_code, "name": body.name}
    control = await ControlRegistry(session=session).create_control(fields, actor=principal.name)
    return ControlResponse.model_validate(control)


@router.get(
    "/{control_id}",
    response_model=ControlResponse,
    dependencies=[Depends(require_roles(ROLE_CONTROL_OWNER))],
)
async def get_control(
    control_id: uuid.UUID,
    session: AsyncSession = Depends(db_session),
) -> ControlResponse:
    return ControlResponse.model_validate(await ControlRegistry(session=session).get_control(control_id))


@router.patch(
    "/{control_id}",
    response_model=ControlResponse,
    dependencies=[Depends(require_roles(ROLE_ADMIN))],
)
async def update_control(
    control_id: uuid.UUID,
    body: ControlUpdateRequest,
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(db_session),
    lists: SharePointLists | None = Depends(optional_lists),
) -> ControlResponse:
    registry = ControlRegistry(session=session, lists=lists)
    control = await registry.update_control(control_id, body.changes, actor=principal.name)
    return ControlResponse.model_validate(control)
