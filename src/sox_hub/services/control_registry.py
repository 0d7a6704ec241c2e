"""
sox_hub.services.control_registry

Control matrix service (transaction + persistence owner).

Responsibilities:
- Read and filter the control matrix, including owner views and dashboard counters.
- Create and edit controls, appending one history row per mutation.
- Bulk import rows keyed by the controls list headers.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from sox_hub.db.models import Control, ControlStatus, User, utcnow
from sox_hub.db.repositories.change_requests import ChangeRequestRepo
from sox_hub.db.repositories.controls import ControlFilters, ControlRepo
from sox_hub.db.repositories.version_history import VersionHistoryRepo
from sox_hub.directory.mapping import CONTROL_FIELD_HEADERS, fields_from_headers
from sox_hub.directory.sharepoint_lists import SharePointLists
from sox_hub.errors import ConflictError, InvalidRequestError, NotFoundError, SoxHubError
from sox_hub.observability.logging import get_logger
from sox_hub.services.fields import (
    CREATION_FIELDS,
    EDITABLE_FIELDS,
    apply_changes,
    normalize_changes,
    snapshot,
)

log = get_logger(__name__)


@dataclass(slots=True)
class ImportResult:
    controls_added: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class DashboardSummary:
    active_controls: int
    owners: int
    open_change_requests: int


class ControlRegistry:
    def __init__(self, *, session: AsyncSession, lists: SharePointLists | None = None) -> None:
        self._session = session
        self._lists = lists
        self._controls = ControlRepo(session)
        self._history = VersionHistoryRepo(session)
        self._requests = ChangeRequestRepo(session)

    # --- reads ---------------------------------------------------------------

    async def list_controls(self, filters: ControlFilters | None = None) -> list[Control]:
        return await self._controls.list(filters)

    async def get_control(self, control_id: uuid.UUID) -> Control:
        control = await self._controls.get(control_id)
        if control is None:
            raise NotFoundError(f"Control {control_id} not found")
        return control

    async def owned_controls(self, user: User) -> list[Control]:
        ids: list[uuid.UUID] = []
        for raw in user.controls_owned or []:
            try:
                ids.append(uuid.UUID(str(raw)))
            except ValueError:
                # Owned lists imported from SharePoint may reference retired ids.
                continue
        return await self._controls.list_by_ids(ids, status=ControlStatus.active)

    async def filter_options(self) -> dict[str, list[str]]:
        return {
            "processes": await self._controls.distinct_values(Control.process),
            "sub_processes": await self._controls.distinct_values(Control.sub_process),
            "owners": await self._controls.distinct_values(Control.owner),
            "responsibles": await self._controls.distinct_values(Control.responsible),
            "n3_responsibles": await self._controls.distinct_values(Control.n3_responsible),
        }

    async def dashboard_summary(self) -> DashboardSummary:
        active = await self._controls.list(ControlFilters(status=ControlStatus.active))
        return DashboardSummary(
            active_controls=len(active),
            owners=len({c.owner for c in active if c.owner}),
            open_change_requests=await self._requests.count_open(),
        )

    @staticmethod
    def import_template() -> list[str]:
        return list(CONTROL_FIELD_HEADERS.values())

    # --- staged writes (caller commits) --------------------------------------

    async def add_control(
        self,
        fields: Mapping[str, Any],
        *,
        actor: str,
        summary: str | None = None,
        related_change_request_id: uuid.UUID | None = None,
    ) -> Control:
        values = normalize_changes(fields, allowed=CREATION_FIELDS | {"sharepoint_item_id"})
        code = values.get("control_code")
        if not code or not values.get("name"):
            raise InvalidRequestError("control_code and name are required")
        if await self._controls.get_by_code(code) is not None:
            raise ConflictError(f"Control code '{code}' already exists")

        control = await self._controls.create(control_code=code, name=values["name"])
        apply_changes(control, {k: v for k, v in values.items() if k not in ("control_code", "name")})
        if "status" not in values:
            control.status = ControlStatus.active
        await self._session.flush()

        await self._history.append(
            control_id=control.id,
            changed_by=actor,
            summary=summary or f"Control {code} created",
            previous_values={},
            new_values=snapshot(control, sorted(values)),
            related_change_request_id=related_change_request_id,
        )
        log.info("control_created", control_id=str(control.id), control_code=code)
        return control

    async def change_control(
        self,
        control: Control,
        changes: Mapping[str, Any],
        *,
        actor: str,
        summary: str | None = None,
        related_change_request_id: uuid.UUID | None = None,
        allowed: frozenset[str] = EDITABLE_FIELDS,
    ) -> Control:
        values = normalize_changes(changes, allowed=allowed)
        previous = snapshot(control, values)
        apply_changes(control, values)
        control.last_updated = utcnow()
        await self._session.flush()

        await self._history.append(
            control_id=control.id,
            changed_by=actor,
            summary=summary or f"Updated {', '.join(sorted(values))}",
            previous_values=previous,
            new_values=snapshot(control, values),
            related_change_request_id=related_change_request_id,
        )
        log.info("control_updated", control_id=str(control.id), fields=sorted(values))
        return control

    # --- committed writes ----------------------------------------------------

    async def create_control(self, fields: Mapping[str, Any], *, actor: str) -> Control:
        control = await self.add_control(fields, actor=actor)
        await self._session.commit()
        return control

    async def update_control(
        self, control_id: uuid.UUID, changes: Mapping[str, Any], *, actor: str
    ) -> Control:
        control = await self._controls.get_for_update(control_id)
        if control is None:
            raise NotFoundError(f"Control {control_id} not found")
        await self.change_control(control, changes, actor=actor)
        if self._lists is not None and control.sharepoint_item_id:
            await self._lists.update_control_fields(control.sharepoint_item_id, normalize_changes(changes))
        await self._session.commit()
        return control

    async def bulk_import(self, rows: list[Mapping[str, Any]], *, actor: str) -> ImportResult:
        result = ImportResult()
        code_header = CONTROL_FIELD_HEADERS["control_code"]
        for row in rows:
            try:
                # add_control validates before writing, so a bad row leaves nothing behind.
                fields = fields_from_headers(row)
                fields["status"] = ControlStatus.active
                await self.add_control(fields, actor=actor, summary="Control imported")
                result.controls_added += 1
            except SoxHubError as e:
                result.errors.append(
                    {"control_code": str(row.get(code_header) or "unknown id"), "message": str(e)}
                )
        await self._session.commit()
        log.info("controls_imported", added=result.controls_added, failed=len(result.errors))
        return result


# --- Module Notes -----------------------------------------------------------
# `add_control` / `change_control` stage work without committing so approvals and
# directory sync can wrap them in their own transaction.
