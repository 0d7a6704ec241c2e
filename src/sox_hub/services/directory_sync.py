"""
sox_hub.services.directory_sync

Pulls the SharePoint lists into the local registry.

Responsibilities:
- Upsert controls from the controls list by control code.
- Upsert users from the access list by email.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from sox_hub.db.models import Control
from sox_hub.db.repositories.controls import ControlRepo
from sox_hub.db.repositories.users import UserRepo
from sox_hub.directory.sharepoint_lists import SharePointLists
from sox_hub.errors import InvalidRequestError, SoxHubError
from sox_hub.observability.logging import get_logger
from sox_hub.services.access import primary_profile
from sox_hub.services.control_registry import ControlRegistry
from sox_hub.services.fields import EDITABLE_FIELDS, to_jsonable

log = get_logger(__name__)

SYNCED_FIELDS = EDITABLE_FIELDS | {"sharepoint_item_id"}


@dataclass(slots=True)
class SyncResult:
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)


class DirectorySyncService:
    def __init__(self, *, session: AsyncSession, lists: SharePointLists) -> None:
        self._session = session
        self._lists = lists
        self._controls = ControlRepo(session)
        self._users = UserRepo(session)
        self._registry = ControlRegistry(session=session)

    async def import_controls(self, *, actor: str) -> SyncResult:
        result = SyncResult()
        for fields in await self._lists.fetch_controls():
            code = fields.get("control_code")
            try:
                if not code:
                    raise InvalidRequestError("List item has no control code")
                existing = await self._controls.get_by_code(code)
                if existing is None:
                    await self._registry.add_control(fields, actor=actor, summary="Control imported from SharePoint")
                    result.created += 1
                    continue

                changes = self._differences(existing, fields)
                item_id = fields.get("sharepoint_item_id")
                if item_id and existing.sharepoint_item_id != item_id:
                    # A re-linked list item is recorded in the same history row.
                    changes["sharepoint_item_id"] = item_id
                if not changes:
                    result.unchanged += 1
                    continue
                await self._registry.change_control(
                    existing,
                    changes,
                    actor=actor,
                    summary="Synchronized from SharePoint",
                    allowed=SYNCED_FIELDS,
                )
                result.updated += 1
            except SoxHubError as e:
                result.errors.append({"control_code": str(code or "unknown id"), "message": str(e)})

        await self._session.commit()
        log.info(
            "directory_controls_imported",
            created=result.created,
            updated=result.updated,
            failed=len(result.errors),
        )
        return result

    @staticmethod
    def _differences(control: Control, fields: dict[str, Any]) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for k, v in fields.items():
            if k not in EDITABLE_FIELDS:
                continue
            if k == "extra_fields":
                merged = {**(control.extra_fields or {}), **v}
                if merged != (control.extra_fields or {}):
                    out[k] = v
                continue
            if to_jsonable(getattr(control, k, None)) != to_jsonable(v):
                out[k] = v
        return out

    async def import_users(self) -> SyncResult:
        result = SyncResult()
        for du in await self._lists.fetch_access_users():
            if not du.email:
                result.errors.append({"user": du.name, "message": "Access list row has no email"})
                continue
            user = await self._users.get_by_email(du.email)
            if user is None:
                await self._users.create(
                    name=du.name,
                    email=du.email,
                    roles=list(du.roles),
                    active_profile=primary_profile(du.roles),
                    sharepoint_item_id=du.sharepoint_item_id,
                )
                result.created += 1
            elif sorted(user.roles or []) != sorted(du.roles) or user.sharepoint_item_id != du.sharepoint_item_id:
                user.roles = sorted(du.roles)
                user.active_profile = primary_profile(du.roles)
                user.sharepoint_item_id = du.sharepoint_item_id
                result.updated += 1
            else:
                result.unchanged += 1

        await self._session.commit()
        log.info("directory_users_imported", created=result.created, updated=result.updated)
        return result


# --- Module Notes -----------------------------------------------------------
# The access list is authoritative for roles during import; the last-admin rule is
# enforced on edits made through the hub, not on what the list already says.
