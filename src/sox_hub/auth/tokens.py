"""
sox_hub.auth.tokens

Signed session tokens.

Responsibilities:
- Sign a session token for a registered user (dev login stands in for the IdP).
- Verify a presented token and turn its claims into a `Principal`.

Claims: `sub` is the user id, `name` the display name written into requester and
reviewer fields, `roles` the role set held at login time.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

import jwt

from sox_hub.auth.models import Principal
from sox_hub.settings import Settings

_REQUIRED_CLAIMS = ["exp", "iat", "iss", "aud", "sub"]


class TokenError(Exception):
    """Raised when a bearer token cannot be trusted."""


class SessionTokens:
    def __init__(self, *, secret: str, algorithm: str, issuer: str, audience: str) -> None:
        self._secret = secret
        self._algorithm = algorithm
        self._issuer = issuer
        self._audience = audience

    @classmethod
    def from_settings(cls, settings: Settings) -> SessionTokens:
        return cls(
            secret=settings.jwt_secret,
            algorithm=settings.jwt_alg,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
        )

    def issue(self, *, user_id: str, name: str, roles: list[str], ttl: timedelta) -> str:
        issued_at = datetime.now(tz=UTC)
        claims: dict[str, Any] = {
            "iss": self._issuer,
            "aud": self._audience,
            "sub": user_id,
            "name": name,
            "roles": sorted(roles),
            "iat": int(issued_at.timestamp()),
            "exp": int((issued_at + ttl).timestamp()),
        }
        return jwt.encode(claims, self._secret, algorithm=self._algorithm)

    def verify(self, token: str) -> Principal:
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                issuer=self._issuer,
                audience=self._audience,
                options={"require": _REQUIRED_CLAIMS},
            )
        except jwt.InvalidTokenError as e:
            raise TokenError(str(e)) from e

        subject = str(claims.get("sub") or "")
        if not subject:
            raise TokenError("token subject is empty")
        roles = claims.get("roles", [])
        if not isinstance(roles, list):
            raise TokenError("token roles must be a list")
        return Principal(
            subject=subject,
            name=str(claims.get("name") or subject),
            roles=frozenset(str(r) for r in roles),
        )
