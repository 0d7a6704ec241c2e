"""
sox_hub.directory.sharepoint_lists

Operations on the three SharePoint lists the hub mirrors.

Responsibilities:
- Controls list (`LISTA-MATRIZ-SOX`): read, add, bulk add, patch fields, add columns.
- History list (`REGISTRO-MATRIZ`): change requests and their review outcome.
- Access list (`lista-acessos`): users and their admin / control-owner flags.
- Tenant directory search for onboarding new users.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from sox_hub.auth.models import ROLE_ADMIN, ROLE_CONTROL_OWNER
from sox_hub.db.models import ChangeRequest, ChangeRequestStatus, ChangeRequestType
from sox_hub.directory.graph_client import GraphClient
from sox_hub.directory.mapping import (
    CONTROL_FIELD_HEADERS,
    REQUEST_STATUS_LABELS,
    REQUEST_TYPE_LABELS,
    SYSTEM_COLUMNS,
    SharePointColumn,
    classify_column,
    column_internal_name,
    extra_field_key,
    item_to_control_fields,
    parse_request_status,
    parse_request_type,
    parse_sharepoint_boolean,
    to_sharepoint_value,
)
from sox_hub.errors import DirectoryError, InvalidRequestError
from sox_hub.observability.logging import get_logger
from sox_hub.settings import Settings

log = get_logger(__name__)

# History list internal column names (the list was created from a spreadsheet,
# hence the generated `field_N` names).
H_TITLE = "Title"
H_TYPE = "field_2"
H_CONTROL_NAME = "field_3"
H_CONTROL_CODE = "field_4"
H_REQUESTED_BY = "field_5"
H_REQUEST_DATE = "field_6"
H_COMMENTS = "field_7"
H_STATUS = "field_8"
H_FIELD_NAME = "Campoajustado"
H_NEW_VALUE = "Descricaocampo"
H_REVIEWED_BY = "field_10"
H_REVIEW_DATE = "field_11"
H_ADMIN_FEEDBACK = "field_12"

# Marks a history row carrying several changed fields as one JSON object.
MULTI_FIELD_MARKER = "*"

# Access list internal column names.
A_NAME = "Title"
A_EMAIL = "e_x002d_mail2"
A_ADMIN = "acesso_x002d_admin"
A_OWNER = "acesso_x002d_donocontrole"

ColumnKind = Literal["text", "note", "number", "boolean"]


@dataclass(frozen=True, slots=True)
class DirectoryChangeRequest:
    request_ref: str
    sharepoint_item_id: str
    control_code: str | None
    control_name: str | None
    request_type: ChangeRequestType
    requested_by: str
    request_date: str | None
    status: ChangeRequestStatus
    comments: str
    changes: dict[str, Any] = field(default_factory=dict)
    reviewed_by: str | None = None
    review_date: str | None = None
    admin_feedback: str = ""


@dataclass(frozen=True, slots=True)
class DirectoryUser:
    sharepoint_item_id: str
    name: str
    email: str | None
    roles: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class TenantUser:
    id: str
    name: str
    email: str | None


def _yes_no(flag: bool) -> str:
    return "Sim" if flag else "Não"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _internal_column(column_map: dict[str, str], name: str) -> str:
    # `name` may be a display name, an internal name, or the whitespace-stripped
    # display name extra fields are stored under.
    if name in column_map:
        return column_map[name]
    if name in column_map.values():
        return name
    for display, internal in column_map.items():
        if extra_field_key(display) == name:
            return internal
    raise DirectoryError(
        f"Could not find SharePoint internal column name for '{name}'. "
        "The column may not exist or is not accessible."
    )


def history_item_to_request(item: dict[str, Any]) -> DirectoryChangeRequest | None:
    f = item.get("fields")
    if not f:
        return None

    changes: dict[str, Any] = {}
    field_name = f.get(H_FIELD_NAME)
    raw_value = f.get(H_NEW_VALUE)
    if field_name and raw_value is not None:
        try:
            value = json.loads(raw_value)
        except (TypeError, ValueError):
            value = raw_value
        if field_name == MULTI_FIELD_MARKER and isinstance(value, dict):
            changes = value
        else:
            changes = {field_name: value}

    return DirectoryChangeRequest(
        request_ref=str(f.get(H_TITLE) or item.get("id")),
        sharepoint_item_id=str(item.get("id")),
        control_code=f.get(H_CONTROL_CODE),
        control_name=f.get(H_CONTROL_NAME),
        request_type=parse_request_type(f.get(H_TYPE)),
        requested_by=f.get(H_REQUESTED_BY) or "Não encontrado",
        request_date=f.get(H_REQUEST_DATE) or item.get("lastModifiedDateTime"),
        status=parse_request_status(f.get(H_STATUS)),
        comments=f.get(H_COMMENTS) or "Nenhum detalhe fornecido.",
        changes=changes,
        reviewed_by=f.get(H_REVIEWED_BY),
        review_date=f.get(H_REVIEW_DATE),
        admin_feedback=f.get(H_ADMIN_FEEDBACK) or "",
    )


def access_item_to_user(item: dict[str, Any]) -> DirectoryUser | None:
    f = item.get("fields")
    if not f:
        return None
    roles: list[str] = []
    if parse_sharepoint_boolean(f.get(A_ADMIN)):
        roles.append(ROLE_ADMIN)
    if parse_sharepoint_boolean(f.get(A_OWNER)):
        roles.append(ROLE_CONTROL_OWNER)
    # Rows without any access flag are former users kept for reference.
    if not roles:
        return None
    email = f.get(A_EMAIL)
    return DirectoryUser(
        sharepoint_item_id=str(item.get("id")),
        name=f.get(A_NAME) or "Nome não encontrado",
        email=email.strip().lower() if isinstance(email, str) else None,
        roles=tuple(roles),
    )


class SharePointLists:
    def __init__(
        self,
        graph: GraphClient,
        *,
        controls_list: str,
        history_list: str,
        access_list: str,
    ) -> None:
        self._graph = graph
        self.controls_list = controls_list
        self.history_list = history_list
        self.access_list = access_list

    @classmethod
    def from_settings(cls, graph: GraphClient, settings: Settings) -> SharePointLists:
        return cls(
            graph,
            controls_list=settings.sharepoint_controls_list,
            history_list=settings.sharepoint_history_list,
            access_list=settings.sharepoint_access_list,
        )

    # --- columns -------------------------------------------------------------

    async def _list_columns(self, list_name: str, *, hide_system: bool) -> list[SharePointColumn]:
        out: list[SharePointColumn] = []
        for c in await self._graph.columns(list_name):
            if c.get("hidden"):
                continue
            if hide_system and (c.get("readOnly") or c.get("name") in SYSTEM_COLUMNS):
                continue
            out.append(
                SharePointColumn(
                    display_name=str(c.get("displayName")),
                    internal_name=str(c.get("name")),
                    type=classify_column(c),
                )
            )
        return out

    async def control_columns(self) -> list[SharePointColumn]:
        return await self._list_columns(self.controls_list, hide_system=True)

    async def history_columns(self) -> list[SharePointColumn]:
        return await self._list_columns(self.history_list, hide_system=False)

    async def access_columns(self) -> list[SharePointColumn]:
        return await self._list_columns(self.access_list, hide_system=False)

    async def add_column(self, *, display_name: str, kind: ColumnKind) -> dict[str, Any]:
        internal = column_internal_name(display_name)
        if not internal:
            raise InvalidRequestError("Column name must contain at least one letter or digit")
        payload: dict[str, Any] = {"name": internal, "displayName": display_name}
        if kind == "note":
            payload["text"] = {"allowMultipleLines": True}
        else:
            payload[kind] = {}
        created = await self._graph.post(f"{await self._graph.list_path(self.controls_list)}/columns", payload)
        self._graph.forget_columns(self.controls_list)
        log.info("directory_column_added", display_name=display_name, internal_name=internal, kind=kind)
        return created

    # --- controls list -------------------------------------------------------

    async def fetch_controls(self) -> list[dict[str, Any]]:
        columns = await self.control_columns()
        items = await self._graph.get_all(
            f"{await self._graph.list_path(self.controls_list)}/items",
            params={"expand": "fields(select=*)"},
        )
        return [item_to_control_fields(item, columns) for item in items if item.get("fields")]

    async def update_control_fields(self, item_id: str, changes: dict[str, Any]) -> None:
        """
        Patch a controls list item.

        Registry fields go to their mapped columns; `extra_fields` is spread out so
        each extra key lands in its own column.
        """

        if not item_id:
            raise InvalidRequestError("SharePoint list item id is required for updating")
        column_map = await self._graph.column_map(self.controls_list)
        payload: dict[str, Any] = {}
        for name, value in changes.items():
            if name == "extra_fields":
                for key, extra_value in (value or {}).items():
                    payload[_internal_column(column_map, key)] = extra_value
                continue
            display = CONTROL_FIELD_HEADERS.get(name, name)
            payload[_internal_column(column_map, display)] = to_sharepoint_value(name, value)
        await self._graph.patch(
            f"{await self._graph.list_path(self.controls_list)}/items/{item_id}/fields", payload
        )

    async def add_control(self, row: dict[str, Any]) -> str:
        """Create a list item from a display-name keyed row; returns the new item id."""

        column_map = await self._graph.column_map(self.controls_list)
        values = {column_map.get(display, display): value for display, value in row.items()}
        values["Status"] = "Ativo"
        created = await self._graph.post(
            f"{await self._graph.list_path(self.controls_list)}/items", {"fields": values}
        )
        return str(created.get("id"))

    async def add_controls_bulk(self, rows: list[dict[str, Any]]) -> tuple[int, list[dict[str, str]]]:
        added = 0
        errors: list[dict[str, str]] = []
        for row in rows:
            try:
                await self.add_control(row)
                added += 1
            except (DirectoryError, InvalidRequestError) as e:
                code = row.get(CONTROL_FIELD_HEADERS["control_code"]) or "unknown id"
                errors.append({"control_code": str(code), "message": str(e)})
        return added, errors

    # --- history list --------------------------------------------------------

    async def fetch_change_requests(self) -> list[DirectoryChangeRequest]:
        items = await self._graph.get_all(
            f"{await self._graph.list_path(self.history_list)}/items", params={"expand": "fields"}
        )
        requests = [r for r in (history_item_to_request(i) for i in items) if r is not None]
        requests.sort(key=lambda r: r.request_date or "", reverse=True)
        return requests

    async def add_change_request(self, cr: ChangeRequest) -> str:
        if len(cr.changes) == 1:
            field_name, value = next(iter(cr.changes.items()))
        else:
            field_name, value = MULTI_FIELD_MARKER, cr.changes
        control_code = cr.control_code or cr.changes.get("control_code")
        control_name = cr.control_name or cr.changes.get("name")
        values = {
            H_TITLE: str(cr.id),
            H_TYPE: REQUEST_TYPE_LABELS[cr.request_type],
            H_CONTROL_NAME: control_name,
            H_CONTROL_CODE: control_code,
            H_REQUESTED_BY: cr.requested_by,
            H_REQUEST_DATE: _iso(cr.request_date),
            H_COMMENTS: cr.comments,
            H_FIELD_NAME: field_name,
            H_NEW_VALUE: json.dumps(value, default=str),
            H_STATUS: REQUEST_STATUS_LABELS[cr.status],
        }
        created = await self._graph.post(
            f"{await self._graph.list_path(self.history_list)}/items", {"fields": values}
        )
        return str(created.get("id"))

    async def update_change_request_status(self, cr: ChangeRequest) -> None:
        if not cr.sharepoint_item_id:
            raise InvalidRequestError(f"Change request {cr.id} has no SharePoint list item")
        values = {
            H_STATUS: REQUEST_STATUS_LABELS[cr.status],
            H_REVIEWED_BY: cr.reviewed_by,
            H_REVIEW_DATE: _iso(cr.review_date),
            H_ADMIN_FEEDBACK: cr.admin_feedback or "",
        }
        await self._graph.patch(
            f"{await self._graph.list_path(self.history_list)}/items/{cr.sharepoint_item_id}/fields",
            values,
        )

    # --- access list ---------------------------------------------------------

    async def fetch_access_users(self) -> list[DirectoryUser]:
        items = await self._graph.get_all(
            f"{await self._graph.list_path(self.access_list)}/items", params={"expand": "fields"}
        )
        return [u for u in (access_item_to_user(i) for i in items) if u is not None]

    async def find_access_user(self, email: str) -> DirectoryUser | None:
        wanted = email.strip().lower()
        if not wanted:
            return None
        return next((u for u in await self.fetch_access_users() if u.email == wanted), None)

    async def add_access_user(self, *, name: str, email: str) -> DirectoryUser:
        values = {
            A_NAME: name,
            A_EMAIL: email.strip().lower(),
            A_OWNER: _yes_no(True),
            A_ADMIN: _yes_no(False),
        }
        created = await self._graph.post(
            f"{await self._graph.list_path(self.access_list)}/items", {"fields": values}
        )
        user = access_item_to_user({**created, "fields": {**(created.get("fields") or {}), **values}})
        if user is None:
            raise DirectoryError("Failed to map the newly created user from SharePoint response.")
        return user

    async def update_access_roles(self, item_id: str, *, is_admin: bool, is_control_owner: bool) -> None:
        await self._graph.patch(
            f"{await self._graph.list_path(self.access_list)}/items/{item_id}/fields",
            {A_ADMIN: _yes_no(is_admin), A_OWNER: _yes_no(is_control_owner)},
        )

    async def delete_access_user(self, item_id: str) -> None:
        await self._graph.delete(f"{await self._graph.list_path(self.access_list)}/items/{item_id}")

    # --- tenant directory ----------------------------------------------------

    async def search_tenant_users(self, query: str) -> list[TenantUser]:
        q = (query or "").strip()
        if len(q) < 3:
            return []
        q = q.replace("'", "''")
        body = await self._graph.get(
            "/users",
            params={
                "$filter": f"(startsWith(displayName, '{q}') or startsWith(mail, '{q}')) and accountEnabled eq true",
                "$count": "true",
                "$top": "25",
                "$select": "id,displayName,mail,userPrincipalName",
            },
            headers={"ConsistencyLevel": "eventual"},
        )
        return [
            TenantUser(
                id=str(u.get("id")),
                name=str(u.get("displayName") or ""),
                email=u.get("mail") or u.get("userPrincipalName"),
            )
            for u in body.get("value") or []
        ]


# --- Module Notes -----------------------------------------------------------
# History rows hold one changed field each; multi-field requests are stored under
# the "*" field name with the whole change set as JSON.
