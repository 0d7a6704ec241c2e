"""
sox_hub.api.app

FastAPI app factory for the SOX Hub service.

Responsibilities:
- Build the FastAPI application and register routers/middleware.
- Map domain exceptions onto HTTP responses.
- Initialize and dispose shared infrastructure (DB engine, Graph client) in the lifespan.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from sox_hub import __version__
from sox_hub.api.routers.access import router as access_router
from sox_hub.api.routers.change_requests import router as change_requests_router
from sox_hub.api.routers.controls import router as controls_router
from sox_hub.api.routers.dev_auth import router as dev_auth_router
from sox_hub.api.routers.directory import router as directory_router
from sox_hub.api.routers.health import router as health_router
from sox_hub.api.routers.history import router as history_router
from sox_hub.api.routers.notifications import router as notifications_router
from sox_hub.db.init_db import init_db
from sox_hub.db.seed import seed_demo_data
from sox_hub.db.session import create_engine, create_sessionmaker
from sox_hub.directory.graph_client import GraphClient
from sox_hub.directory.sharepoint_lists import SharePointLists
from sox_hub.errors import SoxHubError
from sox_hub.observability.logging import configure_logging, get_logger
from sox_hub.observability.middleware import RequestContextMiddleware
from sox_hub.settings import Settings

log = get_logger(__name__)


def _lifespan(settings: Settings):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        log.info("startup", env=settings.env, sharepoint=settings.sharepoint_configured)
        engine = create_engine(settings)
        app.state.engine = engine
        app.state.sessionmaker = create_sessionmaker(engine)
        if settings.env in ("dev", "test"):
            # Prod schema changes go through Alembic.
            await init_db(engine)
            if settings.seed_demo_data:
                await seed_demo_data(app.state.sessionmaker)

        app.state.graph = None
        app.state.sharepoint = None
        if settings.sharepoint_configured:
            graph = GraphClient.from_settings(settings)
            app.state.graph = graph
            app.state.sharepoint = SharePointLists.from_settings(graph, settings)
        try:
            yield
        finally:
            if app.state.graph is not None:
                await app.state.graph.aclose()
            await engine.dispose()
            log.info("shutdown")

    return lifespan


def create_app(*, settings: Settings) -> FastAPI:
    configure_logging(service_name=settings.service_name, level=settings.log_level)

    app = FastAPI(
        title="SOX Hub",
        version=__version__,
        docs_url="/docs",
        openapi_url="/openapi.json",
        lifespan=_lifespan(settings),
    )
    app.state.settings = settings

    app.add_middleware(RequestContextMiddleware)
    app.include_router(health_router, tags=["health"])
    app.include_router(dev_auth_router)
    app.include_router(controls_router)
    app.include_router(change_requests_router)
    app.include_router(history_router)
    app.include_router(access_router)
    app.include_router(notifications_router)
    app.include_router(directory_router)

    @app.exception_handler(SoxHubError)
    async def _domain_error(request: Request, exc: SoxHubError) -> JSONResponse:
        log.warning(
            "request_rejected",
            error_type=type(exc).__name__,
            status_code=exc.status_code,
            detail=str(exc),
        )
        return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})

    return app


# --- Module Notes -----------------------------------------------------------
# The Graph client (and its id cache) lives for the process; requests share it.
