"""
tests.test_graph_client

Graph client and SharePoint list operations against canned Graph responses.
"""

from __future__ import annotations

import json
import uuid

import httpx
import pytest
import pytest_asyncio

from sox_hub.db.models import ChangeRequest, ChangeRequestStatus, ChangeRequestType
from sox_hub.directory.graph_client import GraphClient
from sox_hub.directory.sharepoint_lists import (
    H_FIELD_NAME,
    H_NEW_VALUE,
    MULTI_FIELD_MARKER,
    SharePointLists,
    history_item_to_request,
)
from sox_hub.errors import DirectoryError, InvalidRequestError

from tests.graph_stub import SITE_ID, GraphStub, make_graph, make_lists


@pytest.fixture()
def stub() -> GraphStub:
    s = GraphStub()
    s.on("GET", f"/sites/{SITE_ID}/lists", {"value": [{"id": "list-1"}]})
    return s


@pytest_asyncio.fixture()
async def graph(stub: GraphStub):
    client = make_graph(stub)
    yield client
    await client.aclose()


@pytest.fixture()
def lists(graph: GraphClient) -> SharePointLists:
    return make_lists(graph)


@pytest.mark.asyncio
async def test_list_id_is_resolved_once(graph: GraphClient, stub: GraphStub) -> None:
    assert await graph.list_id("LISTA-MATRIZ-SOX") == "list-1"
    assert await graph.list_id("LISTA-MATRIZ-SOX") == "list-1"

    assert stub.count("GET", f"/sites/{SITE_ID}/lists") == 1
    assert stub.count("GET", "/sites/contoso.sharepoint.com:/sites/sox") == 1
    lookup = [r for r in stub.requests if r.url.path.endswith("/lists")][0]
    assert lookup.url.params["$filter"] == "displayName eq 'LISTA-MATRIZ-SOX'"
    assert lookup.headers["Authorization"] == "Bearer test-token"


@pytest.mark.asyncio
async def test_ambiguous_and_missing_lists(graph: GraphClient, stub: GraphStub) -> None:
    stub.on("GET", f"/sites/{SITE_ID}/lists", {"value": [{"id": "a"}, {"id": "b"}]})
    with pytest.raises(DirectoryError, match="Multiple lists found"):
        await graph.list_id("dup")

    stub.on("GET", f"/sites/{SITE_ID}/lists", {"value": []})
    with pytest.raises(DirectoryError, match="not found in the specified SharePoint site"):
        await graph.list_id("missing")


@pytest.mark.asyncio
async def test_get_all_follows_next_link(graph: GraphClient, stub: GraphStub) -> None:
    stub.routes[("GET", "/things")] = lambda req: (
        httpx.Response(200, json={"value": [{"n": 3}]})
        if req.url.params.get("page") == "2"
        else httpx.Response(
            200,
            json={"value": [{"n": 1}, {"n": 2}], "@odata.nextLink": "https://graph.test/v1.0/things?page=2"},
        )
    )

    items = await graph.get_all("/things")

    assert [i["n"] for i in items] == [1, 2, 3]
    assert stub.count("GET", "/things") == 2


@pytest.mark.asyncio
async def test_graph_error_message_is_surfaced(graph: GraphClient, stub: GraphStub) -> None:
    stub.on("PATCH", "/broken", {"error": {"code": "invalidRequest", "message": "Field 'X' is read only"}}, status=400)

    with pytest.raises(DirectoryError) as excinfo:
        await graph.patch("/broken", {"X": 1})

    assert "returned 400" in str(excinfo.value)
    assert "SharePoint Error: Field 'X' is read only" in str(excinfo.value)


@pytest.mark.asyncio
async def test_no_content_returns_empty_body(graph: GraphClient, stub: GraphStub) -> None:
    stub.routes[("DELETE", "/items/7")] = lambda _req: httpx.Response(204)
    assert await graph.request("DELETE", "/items/7") == {}


@pytest.mark.asyncio
async def test_short_tenant_query_makes_no_call(lists: SharePointLists, stub: GraphStub) -> None:
    assert await lists.search_tenant_users("ab") == []
    assert stub.requests == []


@pytest.mark.asyncio
async def test_tenant_search_uses_advanced_query(lists: SharePointLists, stub: GraphStub) -> None:
    stub.on(
        "GET",
        "/users",
        {
            "value": [
                {"id": "u1", "displayName": "Maria Santos", "mail": "maria@example.com"},
                {"id": "u2", "displayName": "Mario Lima", "mail": None, "userPrincipalName": "mario@example.com"},
            ]
        },
    )

    found = await lists.search_tenant_users("Mari")

    assert [u.email for u in found] == ["maria@example.com", "mario@example.com"]
    sent = stub.requests[-1]
    assert sent.headers["ConsistencyLevel"] == "eventual"
    assert sent.url.params["$count"] == "true"
    assert "startsWith(displayName, 'Mari')" in sent.url.params["$filter"]


@pytest.mark.asyncio
async def test_add_note_column(lists: SharePointLists, stub: GraphStub) -> None:
    stub.on("POST", "/lists/list-1/columns", {"id": "col-1", "name": "Observacoes"})

    await lists.add_column(display_name="Observações", kind="note")

    sent = [r for r in stub.requests if r.method == "POST"][0]
    assert json.loads(sent.content) == {
        "name": "Observaes",
        "displayName": "Observações",
        "text": {"allowMultipleLines": True},
    }


@pytest.mark.asyncio
async def test_column_without_letters_is_rejected(lists: SharePointLists) -> None:
    with pytest.raises(InvalidRequestError):
        await lists.add_column(display_name="???", kind="text")


@pytest.mark.asyncio
async def test_update_control_fields_translates_columns(lists: SharePointLists, stub: GraphStub) -> None:
    stub.on(
        "GET",
        "/lists/list-1/columns",
        {"value": [{"displayName": "Status", "name": "Status"}, {"displayName": "Frequência", "name": "Frequ_x00ea_ncia"}]},
    )
    stub.on("PATCH", "/lists/list-1/items/12/fields", {})

    await lists.update_control_fields("12", {"status": "inactive", "frequency": "Mensal"})

    sent = [r for r in stub.requests if r.method == "PATCH"][0]
    assert json.loads(sent.content) == {"Status": "Inativo", "Frequ_x00ea_ncia": "Mensal"}

    with pytest.raises(DirectoryError, match="Could not find SharePoint internal column name"):
        await lists.update_control_fields("12", {"modality": "manual"})


@pytest.mark.asyncio
async def test_access_users_without_flags_are_skipped(lists: SharePointLists, stub: GraphStub) -> None:
    stub.on(
        "GET",
        "/lists/list-1/items",
        {
            "value": [
                {"id": "1", "fields": {"Title": "Ana", "e_x002d_mail2": " Ana@Example.com ", "acesso_x002d_admin": "Sim"}},
                {"id": "2", "fields": {"Title": "Bruno", "e_x002d_mail2": "bruno@example.com", "acesso_x002d_donocontrole": "Sim"}},
                {"id": "3", "fields": {"Title": "Carla", "e_x002d_mail2": "carla@example.com"}},
            ]
        },
    )

    users = await lists.fetch_access_users()

    assert [(u.name, u.email, u.roles) for u in users] == [
        ("Ana", "ana@example.com", ("admin",)),
        ("Bruno", "bruno@example.com", ("control_owner",)),
    ]
    assert await lists.find_access_user("BRUNO@example.com") is not None


@pytest.mark.asyncio
async def test_multi_field_request_is_written_under_marker(lists: SharePointLists, stub: GraphStub) -> None:
    stub.on("POST", "/lists/list-1/items", {"id": "99"})
    cr = ChangeRequest(
        id=uuid.uuid4(),
        control_code="FIN-001",
        control_name="Bank Reconciliation Review",
        request_type=ChangeRequestType.update,
        requested_by="Owner User",
        changes={"frequency": "daily", "owner": "Owner User"},
        comments="Aligning with the new close calendar",
        status=ChangeRequestStatus.pending,
    )

    assert await lists.add_change_request(cr) == "99"

    fields = json.loads(stub.requests[-1].content)["fields"]
    assert fields[H_FIELD_NAME] == MULTI_FIELD_MARKER
    assert json.loads(fields[H_NEW_VALUE]) == {"frequency": "daily", "owner": "Owner User"}

    parsed = history_item_to_request({"id": "99", "fields": fields})
    assert parsed is not None
    assert parsed.changes == {"frequency": "daily", "owner": "Owner User"}
    assert parsed.status == ChangeRequestStatus.pending
    assert parsed.request_type == ChangeRequestType.update


@pytest.mark.asyncio
async def test_list_name_quotes_are_escaped(graph: GraphClient, stub: GraphStub) -> None:
    await graph.list_id("Controles d'Auditoria")

    lookup = [r for r in stub.requests if r.url.path.endswith("/lists")][0]
    assert lookup.url.params["$filter"] == "displayName eq 'Controles d''Auditoria'"


@pytest.mark.asyncio
async def test_extra_fields_are_written_to_their_own_columns(lists: SharePointLists, stub: GraphStub) -> None:
    stub.on(
        "GET",
        "/lists/list-1/columns",
        {
            "value": [
                {"displayName": "Frequência", "name": "Frequ_x00ea_ncia"},
                {"displayName": "Área Responsável", "name": "AreaResponsavel"},
                {"displayName": "Sistema", "name": "Sistema0"},
            ]
        },
    )
    stub.on("PATCH", "/lists/list-1/items/12/fields", {})

    # Imported extra fields are keyed by the display name without whitespace;
    # internal names are accepted as well.
    await lists.update_control_fields(
        "12",
        {"frequency": "Mensal", "extra_fields": {"ÁreaResponsável": "Tesouraria", "Sistema0": "SAP"}},
    )

    assert stub.sent("PATCH", "/items/12/fields") == [
        {"Frequ_x00ea_ncia": "Mensal", "AreaResponsavel": "Tesouraria", "Sistema0": "SAP"}
    ]

    with pytest.raises(DirectoryError, match="Could not find SharePoint internal column name for 'Nope'"):
        await lists.update_control_fields("12", {"extra_fields": {"Nope": 1}})


@pytest.mark.asyncio
async def test_bulk_add_collects_row_errors(lists: SharePointLists, stub: GraphStub) -> None:
    stub.on("GET", "/lists/list-1/columns", {"value": [{"displayName": "Código NOVO", "name": "Codigo"}]})
    stub.routes[("POST", "/lists/list-1/items")] = lambda req: (
        httpx.Response(400, json={"error": {"message": "Duplicate code"}})
        if json.loads(req.content)["fields"]["Codigo"] == "FIN-001"
        else httpx.Response(201, json={"id": "40"})
    )

    added, errors = await lists.add_controls_bulk([{"Código NOVO": "TAX-001"}, {"Código NOVO": "FIN-001"}])

    assert added == 1
    assert errors[0]["control_code"] == "FIN-001"
    assert "Duplicate code" in errors[0]["message"]
    assert stub.sent("POST", "/lists/list-1/items")[0] == {"fields": {"Codigo": "TAX-001", "Status": "Ativo"}}


@pytest.mark.asyncio
async def test_history_list_is_read_newest_first(lists: SharePointLists, stub: GraphStub) -> None:
    stub.on(
        "GET",
        "/lists/list-1/items",
        {
            "value": [
                {"id": "1", "fields": {"Title": "a", "field_2": "Alteração", "field_4": "FIN-001", "field_6": "2024-01-02", "field_8": "Aprovado", "Campoajustado": "frequency", "Descricaocampo": "\"daily\""}},
                {"id": "2", "fields": {"Title": "b", "field_2": "Criação", "field_6": "2024-03-01", "field_8": "Pendente"}},
                {"id": "3"},
            ]
        },
    )

    requests = await lists.fetch_change_requests()

    assert [r.request_ref for r in requests] == ["b", "a"]
    assert requests[0].request_type == ChangeRequestType.create
    assert requests[1].status == ChangeRequestStatus.approved
    assert requests[1].changes == {"frequency": "daily"}
