"""
sox_hub.auth.deps

FastAPI dependencies for authentication and role checks.

Responsibilities:
- Resolve the app's `Settings` for a request.
- Turn the bearer token into a `Principal` and bind it to the log context.
- Build role-gated dependencies; admins pass every gate.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.status import HTTP_401_UNAUTHORIZED, HTTP_403_FORBIDDEN

from sox_hub.auth.models import Principal
from sox_hub.auth.tokens import SessionTokens, TokenError
from sox_hub.observability.logging import bind_actor
from sox_hub.settings import Settings, get_settings

_bearer = HTTPBearer(auto_error=False)


def app_settings(request: Request) -> Settings:
    # create_app pins its Settings on app.state; fall back to the env-driven cache.
    return getattr(request.app.state, "settings", None) or get_settings()


def get_principal(
    creds: HTTPAuthorizationCredentials | None = Depends(_bearer),
    settings: Settings = Depends(app_settings),
) -> Principal:
    if creds is None or not creds.credentials:
        raise HTTPException(status_code=HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    try:
        principal = SessionTokens.from_settings(settings).verify(creds.credentials)
    except TokenError as e:
        raise HTTPException(status_code=HTTP_401_UNAUTHORIZED, detail=f"Invalid token: {e}") from e

    bind_actor(actor_id=principal.subject, actor_name=principal.name)
    return principal


def require_roles(*allowed: str):
    allowed_set = frozenset(allowed)

    def _dep(principal: Principal = Depends(get_principal)) -> Principal:
        if principal.is_admin or allowed_set & principal.roles:
            return principal
        raise HTTPException(status_code=HTTP_403_FORBIDDEN, detail="Insufficient role")

    return _dep


# --- Module Notes -----------------------------------------------------------
# Tokens carry the role set at login time; role changes made through the access
# endpoints take effect on the user's next login.
