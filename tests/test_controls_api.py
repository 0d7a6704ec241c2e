"""
tests.test_controls_api

Control matrix endpoints against the seeded demo data.
"""

from __future__ import annotations

import httpx
import pytest

from tests.conftest import control_by_code


@pytest.mark.asyncio
async def test_list_defaults_to_active_controls(
    client: httpx.AsyncClient, owner_headers: dict[str, str]
) -> None:
    r = await client.get("/v1/controls", headers=owner_headers)
    assert r.status_code == 200
    codes = [c["control_code"] for c in r.json()]
    assert codes == ["FIN-001", "ITG-005"]

    r = await client.get("/v1/controls", params={"status": "all"}, headers=owner_headers)
    assert {c["control_code"] for c in r.json()} == {"FIN-001", "ITG-005", "PRO-012"}


@pytest.mark.asyncio
async def test_filters(client: httpx.AsyncClient, owner_headers: dict[str, str]) -> None:
    r = await client.get("/v1/controls", params={"search": "BANK"}, headers=owner_headers)
    assert [c["control_code"] for c in r.json()] == ["FIN-001"]

    r = await client.get(
        "/v1/controls",
        params={"process": "User Access Management", "owner": "all"},
        headers=owner_headers,
    )
    assert [c["control_code"] for c in r.json()] == ["ITG-005"]

    r = await client.get(
        "/v1/controls", params={"status": "pending", "process": "Procurement"}, headers=owner_headers
    )
    assert [c["control_code"] for c in r.json()] == ["PRO-012"]


@pytest.mark.asyncio
async def test_filter_options_and_summary(
    client: httpx.AsyncClient, admin_headers: dict[str, str]
) -> None:
    r = await client.get("/v1/controls/filter-options", headers=admin_headers)
    options = r.json()
    assert options["processes"] == ["Financial Reporting", "Procurement", "User Access Management"]
    assert "Alice Wonderland" in options["owners"]

    r = await client.get("/v1/controls/summary", headers=admin_headers)
    assert r.json() == {"active_controls": 2, "owners": 2, "open_change_requests": 2}


@pytest.mark.asyncio
async def test_owner_sees_owned_controls(
    client: httpx.AsyncClient, owner_headers: dict[str, str]
) -> None:
    r = await client.get("/v1/controls/mine", headers=owner_headers)
    assert [c["control_code"] for c in r.json()] == ["FIN-001", "ITG-005"]


@pytest.mark.asyncio
async def test_admin_edit_appends_history(
    client: httpx.AsyncClient, admin_headers: dict[str, str]
) -> None:
    fin = await control_by_code(client, admin_headers, "FIN-001")

    r = await client.patch(
        f"/v1/controls/{fin['id']}",
        json={"changes": {"owner": "Finance Manager", "mrc": "Não"}},
        headers=admin_headers,
    )
    assert r.status_code == 200, r.text
    assert r.json()["owner"] == "Finance Manager"
    assert r.json()["mrc"] is False

    r = await client.get(f"/v1/controls/{fin['id']}/history", headers=admin_headers)
    latest = r.json()[0]
    assert latest["changed_by"] == "Admin User"
    assert latest["previous_values"] == {"owner": "Alice Wonderland", "mrc": True}
    assert latest["new_values"] == {"owner": "Finance Manager", "mrc": False}


@pytest.mark.asyncio
async def test_edit_validation(client: httpx.AsyncClient, admin_headers: dict[str, str]) -> None:
    fin = await control_by_code(client, admin_headers, "FIN-001")

    r = await client.patch(f"/v1/controls/{fin['id']}", json={"changes": {}}, headers=admin_headers)
    assert r.status_code == 422

    r = await client.patch(
        f"/v1/controls/{fin['id']}", json={"changes": {"colour": "blue"}}, headers=admin_headers
    )
    assert r.status_code == 422
    assert "colour" in r.json()["detail"]

    r = await client.patch(
        "/v1/controls/00000000-0000-0000-0000-000000000000",
        json={"changes": {"owner": "x"}},
        headers=admin_headers,
    )
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_owner_cannot_edit_directly(
    client: httpx.AsyncClient, owner_headers: dict[str, str]
) -> None:
    fin = await control_by_code(client, owner_headers, "FIN-001")
    r = await client.patch(
        f"/v1/controls/{fin['id']}", json={"changes": {"owner": "me"}}, headers=owner_headers
    )
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_create_control_rejects_duplicate_code(
    client: httpx.AsyncClient, admin_headers: dict[str, str]
) -> None:
    r = await client.post(
        "/v1/controls",
        json={"control_code": "TAX-001", "name": "Tax provision review", "fields": {"control_type": "D"}},
        headers=admin_headers,
    )
    assert r.status_code == 201, r.text
    assert r.json()["control_type"] == "detective"
    assert r.json()["status"] == "active"

    r = await client.post(
        "/v1/controls",
        json={"control_code": "TAX-001", "name": "Another"},
        headers=admin_headers,
    )
    assert r.status_code == 409


@pytest.mark.asyncio
async def test_bulk_import_collects_row_errors(
    client: httpx.AsyncClient, admin_headers: dict[str, str]
) -> None:
    r = await client.get("/v1/controls/import-template", headers=admin_headers)
    headers = r.json()["headers"]
    assert headers[0] == "Código NOVO"

    rows = [
        {
            "Código NOVO": "REV-100",
            "Nome do Controle": "Revenue cut-off testing",
            "P/D": "Detectivo",
            "Modalidade": "Automático",
            "MRC?": "Sim",
            "Riscos Relacionados": "Cut-off; Revenue overstatement",
            "Área": "Receita",
        },
        {"Código NOVO": "FIN-001", "Nome do Controle": "Duplicate"},
        {"Nome do Controle": "Row without a code"},
        {"Código NOVO": "REV-101", "Nome do Controle": "Bad modality", "Modalidade": "Telepathic"},
    ]
    r = await client.post("/v1/controls/import", json={"rows": rows}, headers=admin_headers)
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["controls_added"] == 1
    assert [e["control_code"] for e in body["errors"]] == ["FIN-001", "unknown id", "REV-101"]

    rev = await control_by_code(client, admin_headers, "REV-100")
    assert rev["status"] == "active"
    assert rev["mrc"] is True
    assert rev["modality"] == "automated"
    assert rev["related_risks"] == ["Cut-off", "Revenue overstatement"]
    assert rev["extra_fields"] == {"Área": "Receita"}

    r = await client.get("/v1/controls", params={"search": "REV-101", "status": "all"}, headers=admin_headers)
    assert r.json() == []
