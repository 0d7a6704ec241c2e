"""
sox_hub.api.routers.health

Liveness and readiness probes.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from sox_hub import __version__
from sox_hub.api.deps import db_session, settings_dep
from sox_hub.settings import Settings

router = APIRouter()


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok", "version": __version__}


@router.get("/readyz")
async def readyz(
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(settings_dep),
) -> dict[str, Any]:
    # The registry is unusable without its database; SharePoint mirroring is optional.
    await session.execute(text("SELECT 1"))
    return {"status": "ready", "sharepoint": settings.sharepoint_configured}
