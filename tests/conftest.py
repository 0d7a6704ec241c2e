"""
tests.conftest

Shared fixtures: an in-process app over an in-memory database seeded with the demo
matrix, plus a helper to log in as the demo users.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

import httpx
import pytest_asyncio
from fastapi import FastAPI

from sox_hub.api.app import create_app
from sox_hub.settings import Settings

ADMIN_EMAIL = "admin@example.com"
OWNER_EMAIL = "owner@example.com"


def make_settings(**overrides: object) -> Settings:
    base: dict[str, object] = {
        "env": "test",
        "database_url": "sqlite+aiosqlite:///:memory:",
        "seed_demo_data": True,
    }
    base.update(overrides)
    return Settings(**base)


@pytest_asyncio.fixture
async def app() -> AsyncIterator[FastAPI]:
    application = create_app(settings=make_settings())
    # httpx ASGITransport does not drive the lifespan; enter it explicitly.
    async with application.router.lifespan_context(application):
        yield application


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def login(client: httpx.AsyncClient, email: str) -> dict[str, str]:
    r = await client.post("/v1/dev/login", json={"email": email})
    assert r.status_code == 200, r.text
    return {"Authorization": f"Bearer {r.json()['access_token']}"}


@pytest_asyncio.fixture
async def admin_headers(client: httpx.AsyncClient) -> dict[str, str]:
    return await login(client, ADMIN_EMAIL)


@pytest_asyncio.fixture
async def owner_headers(client: httpx.AsyncClient) -> dict[str, str]:
    return await login(client, OWNER_EMAIL)


async def control_by_code(client: httpx.AsyncClient, headers: dict[str, str], code: str) -> dict:
    r = await client.get("/v1/controls", params={"status": "all", "search": code}, headers=headers)
    assert r.status_code == 200, r.text
    matches = [c for c in r.json() if c["control_code"] == code]
    assert matches, f"{code} not found"
    return matches[0]
