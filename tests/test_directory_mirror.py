"""
tests.test_directory_mirror

The hub wired to SharePoint: change requests and decisions mirrored onto the history
list, approved and direct edits pushed to the controls list before the local commit,
and list imports into the registry.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI

from sox_hub.db.repositories.change_requests import ChangeRequestRepo
from sox_hub.db.repositories.controls import ControlRepo
from sox_hub.directory.sharepoint_lists import H_CONTROL_CODE, H_FIELD_NAME, H_REVIEWED_BY, H_STATUS, MULTI_FIELD_MARKER

from tests.conftest import control_by_code
from tests.graph_stub import ACCESS_LIST, CONTROLS_LIST, HISTORY_LIST, GraphStub, make_graph, make_lists

CONTROL_COLUMNS = [
    {"displayName": "Código NOVO", "name": "Codigo", "text": {}},
    {"displayName": "Nome do Controle", "name": "NomeControle", "text": {}},
    {"displayName": "Frequência", "name": "Frequ_x00ea_ncia", "text": {}},
    {"displayName": "Área Responsável", "name": "AreaResponsavel", "text": {}},
    {"displayName": "Status", "name": "Status", "choice": {}},
    {"displayName": "ID", "name": "ID", "readOnly": True, "number": {}},
]


@pytest_asyncio.fixture
async def graph_stub(app: FastAPI) -> AsyncIterator[GraphStub]:
    stub = GraphStub()
    stub.route_lists_by_name({CONTROLS_LIST: "controls", HISTORY_LIST: "history", ACCESS_LIST: "access"})
    stub.on("GET", "/lists/controls/columns", {"value": CONTROL_COLUMNS})
    stub.on("PATCH", "/lists/controls/items/12/fields", {})
    stub.on("POST", "/lists/history/items", {"id": "77"})
    stub.on("PATCH", "/lists/history/items/77/fields", {})

    # The lifespan closes app.state.graph on shutdown.
    graph = make_graph(stub)
    app.state.graph = graph
    app.state.sharepoint = make_lists(graph)

    async with app.state.sessionmaker() as session:
        repo = ControlRepo(session)
        (await repo.get_by_code("ITG-005")).sharepoint_item_id = "12"
        (await repo.get_by_code("PRO-012")).sharepoint_item_id = "33"
        await session.commit()
    yield stub


async def _submit(client: httpx.AsyncClient, headers: dict[str, str], control_id: str, changes: dict) -> dict:
    r = await client.post(
        "/v1/change-requests",
        json={"control_id": control_id, "changes": changes, "comments": "Aligning with the close calendar"},
        headers=headers,
    )
    assert r.status_code == 201, r.text
    return r.json()


@pytest.mark.asyncio
async def test_approved_request_is_mirrored_and_pushed(
    app: FastAPI,
    client: httpx.AsyncClient,
    graph_stub: GraphStub,
    owner_headers: dict[str, str],
    admin_headers: dict[str, str],
) -> None:
    itg = await control_by_code(client, owner_headers, "ITG-005")
    cr = await _submit(
        client,
        owner_headers,
        itg["id"],
        {"frequency": "Mensal", "extra_fields": {"ÁreaResponsável": "Tesouraria"}},
    )

    posted = graph_stub.sent("POST", "/lists/history/items")
    assert len(posted) == 1
    assert posted[0]["fields"][H_CONTROL_CODE] == "ITG-005"
    assert posted[0]["fields"][H_FIELD_NAME] == MULTI_FIELD_MARKER
    async with app.state.sessionmaker() as session:
        stored = await ChangeRequestRepo(session).get(uuid.UUID(cr["id"]))
        assert stored.sharepoint_item_id == "77"

    r = await client.post(f"/v1/change-requests/{cr['id']}/review", json={"action": "approve"}, headers=admin_headers)
    assert r.status_code == 200, r.text

    assert graph_stub.sent("PATCH", "/lists/controls/items/12/fields") == [
        {"Frequ_x00ea_ncia": "Mensal", "AreaResponsavel": "Tesouraria"}
    ]
    decision = graph_stub.sent("PATCH", "/lists/history/items/77/fields")[-1]
    assert decision[H_STATUS] == "Aprovado"
    assert decision[H_REVIEWED_BY] == "Admin User"

    itg = await control_by_code(client, owner_headers, "ITG-005")
    assert itg["frequency"] == "Mensal"
    assert itg["extra_fields"] == {"ÁreaResponsável": "Tesouraria"}


@pytest.mark.asyncio
async def test_graph_failure_leaves_request_open_and_control_untouched(
    client: httpx.AsyncClient,
    graph_stub: GraphStub,
    owner_headers: dict[str, str],
    admin_headers: dict[str, str],
) -> None:
    itg = await control_by_code(client, owner_headers, "ITG-005")
    cr = await _submit(client, owner_headers, itg["id"], {"frequency": "Mensal"})
    graph_stub.on(
        "PATCH",
        "/lists/controls/items/12/fields",
        {"error": {"code": "generalException", "message": "Service unavailable"}},
        status=500,
    )

    r = await client.post(f"/v1/change-requests/{cr['id']}/review", json={"action": "approve"}, headers=admin_headers)
    assert r.status_code == 502
    assert "SharePoint Error: Service unavailable" in r.json()["detail"]

    r = await client.get(f"/v1/change-requests/{cr['id']}", headers=admin_headers)
    assert r.json()["status"] == "pending"
    assert r.json()["reviewed_by"] is None
    assert (await control_by_code(client, owner_headers, "ITG-005"))["frequency"] == "on_request"
    r = await client.get(f"/v1/controls/{itg['id']}/history", headers=admin_headers)
    assert [e["summary"] for e in r.json()] == ["Control ITG-005 created"]
    assert graph_stub.count("PATCH", "/lists/history/items/77/fields") == 0


@pytest.mark.asyncio
async def test_feedback_round_trip_updates_history_list(
    client: httpx.AsyncClient,
    graph_stub: GraphStub,
    owner_headers: dict[str, str],
    admin_headers: dict[str, str],
) -> None:
    itg = await control_by_code(client, owner_headers, "ITG-005")
    cr = await _submit(client, owner_headers, itg["id"], {"frequency": "Mensal"})

    r = await client.post(
        f"/v1/change-requests/{cr['id']}/review",
        json={"action": "request_changes", "feedback": "Which calendar?"},
        headers=admin_headers,
    )
    assert r.status_code == 200, r.text
    r = await client.post(
        f"/v1/change-requests/{cr['id']}/revise",
        json={"changes": {"frequency": "Trimestral"}},
        headers=owner_headers,
    )
    assert r.status_code == 200, r.text

    statuses = [body[H_STATUS] for body in graph_stub.sent("PATCH", "/lists/history/items/77/fields")]
    assert statuses == ["Aguardando Feedback do Dono", "Pendente"]


@pytest.mark.asyncio
async def test_admin_edit_pushes_extra_fields(
    client: httpx.AsyncClient, graph_stub: GraphStub, admin_headers: dict[str, str]
) -> None:
    itg = await control_by_code(client, admin_headers, "ITG-005")

    r = await client.patch(
        f"/v1/controls/{itg['id']}",
        json={"changes": {"extra_fields": {"ÁreaResponsável": "Controladoria"}}},
        headers=admin_headers,
    )

    assert r.status_code == 200, r.text
    assert graph_stub.sent("PATCH", "/lists/controls/items/12/fields") == [{"AreaResponsavel": "Controladoria"}]


@pytest.mark.asyncio
async def test_control_import_upserts_by_code(
    client: httpx.AsyncClient, graph_stub: GraphStub, admin_headers: dict[str, str]
) -> None:
    graph_stub.on(
        "GET",
        "/lists/controls/items",
        {
            "value": [
                {"id": "12", "fields": {"Codigo": "ITG-005", "NomeControle": "System Access Approval", "Frequ_x00ea_ncia": "Mensal", "Status": "Ativo"}},
                {"id": "31", "fields": {"Codigo": "FIN-001", "NomeControle": "Bank Reconciliation Review", "Status": "Ativo"}},
                {"id": "33", "fields": {"Codigo": "PRO-012", "NomeControle": "Supplier Integrity Due Diligence", "Status": "Pendente Aprovação"}},
                {"id": "40", "fields": {"Codigo": "TAX-001", "NomeControle": "Tax provision review", "AreaResponsavel": "Tributário"}},
                {"id": "41", "fields": {"NomeControle": "Row without a code"}},
            ]
        },
    )

    r = await client.post("/v1/directory/sync/controls", headers=admin_headers)

    assert r.status_code == 200, r.text
    body = r.json()
    assert (body["created"], body["updated"], body["unchanged"]) == (1, 2, 1)
    assert body["errors"] == [{"control_code": "unknown id", "message": "List item has no control code"}]

    itg = await control_by_code(client, admin_headers, "ITG-005")
    assert itg["frequency"] == "Mensal"
    r = await client.get(f"/v1/controls/{itg['id']}/history", headers=admin_headers)
    latest = r.json()[0]
    assert latest["summary"] == "Synchronized from SharePoint"
    assert latest["previous_values"] == {"frequency": "on_request"}

    # Re-linking a control to a list item is itself a recorded change.
    fin = await control_by_code(client, admin_headers, "FIN-001")
    assert fin["sharepoint_item_id"] == "31"
    r = await client.get(f"/v1/controls/{fin['id']}/history", headers=admin_headers)
    assert r.json()[0]["new_values"] == {"sharepoint_item_id": "31"}

    tax = await control_by_code(client, admin_headers, "TAX-001")
    assert tax["status"] == "active"
    assert tax["sharepoint_item_id"] == "40"
    assert tax["extra_fields"] == {"ÁreaResponsável": "Tributário"}
    r = await client.get(f"/v1/controls/{tax['id']}/history", headers=admin_headers)
    assert [e["summary"] for e in r.json()] == ["Control imported from SharePoint"]


@pytest.mark.asyncio
async def test_user_import_takes_roles_from_access_list(
    client: httpx.AsyncClient, graph_stub: GraphStub, admin_headers: dict[str, str]
) -> None:
    graph_stub.on(
        "GET",
        "/lists/access/items",
        {
            "value": [
                {"id": "1", "fields": {"Title": "Admin User", "e_x002d_mail2": "admin@example.com", "acesso_x002d_admin": "Sim", "acesso_x002d_donocontrole": "Não"}},
                {"id": "2", "fields": {"Title": "Owner User", "e_x002d_mail2": "owner@example.com", "acesso_x002d_donocontrole": "Sim"}},
                {"id": "3", "fields": {"Title": "Carla Dias", "e_x002d_mail2": "Carla@Example.com", "acesso_x002d_donocontrole": "x"}},
                {"id": "4", "fields": {"Title": "Former User", "e_x002d_mail2": "former@example.com"}},
                {"id": "5", "fields": {"Title": "No Mail", "acesso_x002d_admin": "Sim"}},
            ]
        },
    )

    r = await client.post("/v1/directory/sync/users", headers=admin_headers)
    assert r.status_code == 200, r.text
    body = r.json()
    assert (body["created"], body["updated"], body["unchanged"]) == (1, 2, 0)
    assert body["errors"] == [{"user": "No Mail", "message": "Access list row has no email"}]

    r = await client.get("/v1/users", headers=admin_headers)
    users = {u["email"]: u for u in r.json()}
    assert users["admin@example.com"]["roles"] == ["admin"]
    assert users["carla@example.com"]["roles"] == ["control_owner"]
    assert users["carla@example.com"]["active_profile"] == "control_owner"
    assert "former@example.com" not in users

    r = await client.post("/v1/directory/sync/users", headers=admin_headers)
    assert (r.json()["created"], r.json()["updated"], r.json()["unchanged"]) == (0, 0, 3)


@pytest.mark.asyncio
async def test_bulk_add_and_history_listing_endpoints(
    client: httpx.AsyncClient, graph_stub: GraphStub, admin_headers: dict[str, str], owner_headers: dict[str, str]
) -> None:
    graph_stub.on("POST", "/lists/controls/items", {"id": "50"})
    graph_stub.on(
        "GET",
        "/lists/history/items",
        {"value": [{"id": "9", "fields": {"Title": "req-9", "field_2": "Criação", "field_8": "Ciente", "field_6": "2024-05-01"}}]},
    )

    r = await client.post(
        "/v1/directory/controls/bulk",
        json={"rows": [{"Código NOVO": "TAX-002", "Nome do Controle": "Deferred tax review"}]},
        headers=admin_headers,
    )
    assert r.status_code == 200, r.text
    assert r.json() == {"controls_added": 1, "errors": []}
    assert graph_stub.sent("POST", "/lists/controls/items") == [
        {"fields": {"Codigo": "TAX-002", "NomeControle": "Deferred tax review", "Status": "Ativo"}}
    ]

    r = await client.get("/v1/directory/change-requests", headers=admin_headers)
    assert r.status_code == 200, r.text
    [listed] = r.json()
    assert listed["request_ref"] == "req-9"
    assert listed["request_type"] == "create"
    assert listed["status"] == "acknowledged"

    r = await client.get("/v1/directory/change-requests", headers=owner_headers)
    assert r.status_code == 403
