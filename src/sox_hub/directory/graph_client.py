"""
sox_hub.directory.graph_client

Microsoft Graph HTTP client boundary.

Responsibilities:
- Acquire app-only bearer tokens (client-credentials flow via `msal`).
- Issue Graph requests over a shared `httpx.AsyncClient` and follow `@odata.nextLink`.
- Cache site id, list ids and column maps for the client's lifetime.
- Turn transport and Graph failures into `DirectoryError`.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Protocol
from urllib.parse import urlparse

import httpx
import msal

from sox_hub.errors import DirectoryAuthError, DirectoryError, DirectoryNotConfiguredError
from sox_hub.observability.logging import get_logger
from sox_hub.settings import Settings

log = get_logger(__name__)

GRAPH_SCOPE = "https://graph.microsoft.com/.default"


class TokenProvider(Protocol):
    async def get_token(self) -> str: ...


class MsalTokenProvider:
    """
    App-only tokens from Azure AD.

    `msal` keeps an in-memory token cache, so repeated calls reuse a live token.
    """

    def __init__(self, *, tenant_id: str, client_id: str, client_secret: str) -> None:
        self._app = msal.ConfidentialClientApplication(
            client_id,
            authority=f"https://login.microsoftonline.com/{tenant_id}",
            client_credential=client_secret,
        )

    async def get_token(self) -> str:
        # msal is synchronous; keep the event loop free while it talks to Azure AD.
        result = await asyncio.to_thread(self._app.acquire_token_for_client, scopes=[GRAPH_SCOPE])
        token = (result or {}).get("access_token")
        if not token:
            reason = (result or {}).get("error_description") or (result or {}).get("error")
            raise DirectoryAuthError(f"Failed to acquire access token for Graph request. {reason or ''}".strip())
        return token


@dataclass(slots=True)
class IdCache:
    site_id: str | None = None
    list_ids: dict[str, str] = field(default_factory=dict)
    column_maps: dict[str, dict[str, str]] = field(default_factory=dict)


def _odata_literal(value: str) -> str:
    # Single quotes inside an OData string literal are doubled.
    return value.replace("'", "''")


def _graph_error_message(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
    return None


class GraphClient:
    def __init__(
        self,
        *,
        http: httpx.AsyncClient,
        tokens: TokenProvider,
        site_url: str,
    ) -> None:
        self._http = http
        self._tokens = tokens
        self._site_url = site_url
        self.cache = IdCache()

    @classmethod
    def from_settings(cls, settings: Settings) -> GraphClient:
        if not settings.sharepoint_configured:
            raise DirectoryNotConfiguredError(
                "SharePoint integration is not configured (tenant, client id, secret, site URL)."
            )
        tokens = MsalTokenProvider(
            tenant_id=settings.sharepoint_tenant_id or "",
            client_id=settings.sharepoint_client_id or "",
            client_secret=settings.sharepoint_client_secret or "",
        )
        http = httpx.AsyncClient(
            base_url=settings.graph_base_url.rstrip("/"),
            timeout=settings.graph_timeout_seconds,
        )
        return cls(http=http, tokens=tokens, site_url=settings.sharepoint_site_url or "")

    async def aclose(self) -> None:
        await self._http.aclose()

    async def request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        token = await self._tokens.get_token()
        all_headers = {"Authorization": f"Bearer {token}", **(headers or {})}
        try:
            r = await self._http.request(method, url, params=params, json=json, headers=all_headers)
            r.raise_for_status()
        except httpx.HTTPStatusError as e:
            message = f"Graph request failed: {method} {url} returned {e.response.status_code}."
            detail = _graph_error_message(e.response)
            if detail:
                message += f" SharePoint Error: {detail}"
            log.warning("graph_request_failed", method=method, url=url, status_code=e.response.status_code)
            raise DirectoryError(message) from e
        except httpx.HTTPError as e:
            log.warning("graph_transport_failed", method=method, url=url, error=str(e))
            raise DirectoryError(f"Could not connect to Microsoft Graph. Reason: {e}") from e

        if r.status_code == 204 or not r.content:
            return {}
        return r.json()

    async def get(self, url: str, **kwargs: Any) -> dict[str, Any]:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, body: Any, **kwargs: Any) -> dict[str, Any]:
        return await self.request("POST", url, json=body, **kwargs)

    async def patch(self, url: str, body: Any, **kwargs: Any) -> dict[str, Any]:
        return await self.request("PATCH", url, json=body, **kwargs)

    async def delete(self, url: str) -> None:
        await self.request("DELETE", url)

    async def get_all(self, url: str, *, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        """Read every page of a collection."""

        items: list[dict[str, Any]] = []
        page = await self.get(url, params=params)
        while True:
            items.extend(page.get("value") or [])
            next_link = page.get("@odata.nextLink")
            if not next_link:
                return items
            # nextLink is absolute and already carries the query string.
            page = await self.get(next_link)

    async def site_id(self) -> str:
        if self.cache.site_id:
            return self.cache.site_id
        parsed = urlparse(self._site_url)
        site = await self.get(f"/sites/{parsed.hostname}:{parsed.path or '/'}")
        self.cache.site_id = str(site["id"])
        log.info("directory_site_resolved", site_id=self.cache.site_id)
        return self.cache.site_id

    async def list_id(self, list_name: str) -> str:
        cached = self.cache.list_ids.get(list_name)
        if cached:
            return cached
        site_id = await self.site_id()
        found = (
            await self.get(
                f"/sites/{site_id}/lists",
                params={"$filter": f"displayName eq '{_odata_literal(list_name)}'", "$select": "id"},
            )
        ).get("value") or []
        if len(found) > 1:
            raise DirectoryError(f"Multiple lists found with the name '{list_name}'. Please use a unique name.")
        if not found:
            raise DirectoryError(f"List '{list_name}' not found in the specified SharePoint site.")
        list_id = str(found[0]["id"])
        self.cache.list_ids[list_name] = list_id
        log.info("directory_list_resolved", list_name=list_name, list_id=list_id)
        return list_id

    async def list_path(self, list_name: str) -> str:
        return f"/sites/{await self.site_id()}/lists/{await self.list_id(list_name)}"

    async def columns(self, list_name: str) -> list[dict[str, Any]]:
        return await self.get_all(f"{await self.list_path(list_name)}/columns")

    async def column_map(self, list_name: str) -> dict[str, str]:
        """Display name -> internal name for `list_name` (cached)."""

        cached = self.cache.column_maps.get(list_name)
        if cached is not None:
            return cached
        cols = await self.get_all(
            f"{await self.list_path(list_name)}/columns",
            params={"$select": "displayName,name"},
        )
        mapping = {str(c["displayName"]): str(c["name"]) for c in cols}
        self.cache.column_maps[list_name] = mapping
        return mapping

    def forget_columns(self, list_name: str) -> None:
        # Adding a column makes the cached map stale.
        self.cache.column_maps.pop(list_name, None)


# --- Module Notes -----------------------------------------------------------
# The cache is never invalidated for site and list ids: renaming a list requires a
# process restart, which matches how the lists are administered.
