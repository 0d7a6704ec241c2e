"""
tests.test_history

Version history reads and the unified per-control timeline.
"""

from __future__ import annotations

import httpx
import pytest

from tests.conftest import control_by_code


@pytest.mark.asyncio
async def test_timeline_merges_history_and_requests(
    client: httpx.AsyncClient, admin_headers: dict[str, str]
) -> None:
    fin = await control_by_code(client, admin_headers, "FIN-001")

    r = await client.get(f"/v1/controls/{fin['id']}/timeline", headers=admin_headers)
    assert r.status_code == 200
    kinds = [e["kind"] for e in r.json()]
    # Newest first: the open request (1 day old) then the creation row (10 days old).
    assert kinds == ["change_request_submitted", "control_created"]

    pending = (await client.get("/v1/change-requests/pending", headers=admin_headers)).json()
    fin_request = next(cr for cr in pending if cr["control_code"] == "FIN-001")
    r = await client.post(
        f"/v1/change-requests/{fin_request['id']}/review", json={"action": "approve"}, headers=admin_headers
    )
    assert r.status_code == 200

    r = await client.get(f"/v1/controls/{fin['id']}/timeline", headers=admin_headers)
    events = r.json()
    assert [e["kind"] for e in events] == ["change_request_approved", "control_created"]
    assert events[0]["change_request_id"] == fin_request["id"]
    assert events[0]["details"]["new_values"] == {"frequency": "daily"}


@pytest.mark.asyncio
async def test_timeline_shows_rejection(
    client: httpx.AsyncClient, admin_headers: dict[str, str]
) -> None:
    itg = await control_by_code(client, admin_headers, "ITG-005")
    r = await client.post(
        "/v1/change-requests",
        json={"control_id": itg["id"], "changes": {"frequency": "monthly"}},
        headers=admin_headers,
    )
    cr = r.json()
    await client.post(
        f"/v1/change-requests/{cr['id']}/review",
        json={"action": "reject", "feedback": "Quarterly is the policy"},
        headers=admin_headers,
    )

    events = (await client.get(f"/v1/controls/{itg['id']}/timeline", headers=admin_headers)).json()
    assert events[0]["kind"] == "change_request_rejected"
    assert events[0]["summary"] == "Quarterly is the policy"
    assert events[0]["actor"] == "Admin User"


@pytest.mark.asyncio
async def test_recent_history_is_newest_first(
    client: httpx.AsyncClient, admin_headers: dict[str, str]
) -> None:
    r = await client.get("/v1/history", params={"limit": 2}, headers=admin_headers)
    entries = r.json()
    assert len(entries) == 2
    assert entries[0]["change_date"] >= entries[1]["change_date"]
    assert entries[0]["summary"] == "Updated status"


@pytest.mark.asyncio
async def test_history_for_unknown_control(
    client: httpx.AsyncClient, admin_headers: dict[str, str]
) -> None:
    r = await client.get(
        "/v1/controls/00000000-0000-0000-0000-000000000000/history", headers=admin_headers
    )
    assert r.status_code == 404
