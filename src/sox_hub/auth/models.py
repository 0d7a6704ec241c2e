"""
sox_hub.auth.models

Auth domain models.

Responsibilities:
- Define the role vocabulary shared by tokens, users and RBAC dependencies.
- Define the authenticated identity type (`Principal`) injected into endpoints.
"""

from __future__ import annotations

from dataclasses import dataclass

ROLE_ADMIN = "admin"
ROLE_CONTROL_OWNER = "control_owner"
KNOWN_ROLES = frozenset({ROLE_ADMIN, ROLE_CONTROL_OWNER})


@dataclass(frozen=True, slots=True)
class Principal:
    """
    Authenticated caller identity.

    `subject` is the user id (UUID string) and `name` the display name used in
    requester / reviewer / changed-by fields.
    """

    subject: str
    name: str
    roles: frozenset[str]

    @property
    def is_admin(self) -> bool:
        return ROLE_ADMIN in self.roles

    @property
    def is_control_owner(self) -> bool:
        return ROLE_CONTROL_OWNER in self.roles
