"""
sox_hub.settings

Central configuration model (Pydantic Settings).

Responsibilities:
- Provide strongly-typed, env-driven settings for all layers.
- Hide secrets from repr/logging (JWT secret, SharePoint client secret).
- Offer a cached settings instance for dependency injection.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SOX_HUB_", case_sensitive=False)

    # Environment controls toggle behavior like auto-init DB tables and demo seeding.
    env: Literal["dev", "test", "prod"] = "dev"
    service_name: str = "sox-hub"
    log_level: str = "INFO"

    api_host: str = "0.0.0.0"
    api_port: int = 8080

    # Auth
    jwt_alg: str = "HS256"
    jwt_issuer: str = "sox-hub"
    jwt_audience: str = "sox-hub-api"
    jwt_secret: str = Field(default="dev-secret-change-me", repr=False)

    # Persistence
    database_url: str = "sqlite+aiosqlite:///./sox_hub.db"
    seed_demo_data: bool = False

    # SharePoint / Microsoft Graph
    sharepoint_tenant_id: str | None = None
    sharepoint_client_id: str | None = None
    sharepoint_client_secret: str | None = Field(default=None, repr=False)
    sharepoint_site_url: str | None = None
    sharepoint_controls_list: str = "LISTA-MATRIZ-SOX"
    sharepoint_history_list: str = "REGISTRO-MATRIZ"
    sharepoint_access_list: str = "lista-acessos"
    graph_base_url: str = "https://graph.microsoft.com/v1.0"
    graph_timeout_seconds: float = 30.0

    @property
    def sharepoint_configured(self) -> bool:
        return all(
            (
                self.sharepoint_tenant_id,
                self.sharepoint_client_id,
                self.sharepoint_client_secret,
                self.sharepoint_site_url,
            )
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # Cache avoids re-parsing env vars for each request dependency.
    return Settings()


# --- Module Notes -----------------------------------------------------------
# SharePoint settings are optional; the registry runs on the local database alone
# and the directory endpoints answer 503 until all four credentials are present.
