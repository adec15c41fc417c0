"""Per-request access context.

The surrounding system authenticates the user; this engine only receives
the result as an explicit `AccessContext` value and passes it to every
store and collaborator call. Nothing here is global or connection-scoped.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class AccessDeniedError(Exception):
    """Raised when the caller's role does not allow the requested action."""


class Role(str, Enum):
    ADMIN = "admin"
    DOCTOR = "doctor"
    NURSE = "nurse"
    STAFF = "staff"


# Interaction data is reference data needed for prescription safety, so
# every clinical role can read it. Only admins may write it.
_READ_ROLES = frozenset({Role.ADMIN, Role.DOCTOR, Role.NURSE, Role.STAFF})
_WRITE_ROLES = frozenset({Role.ADMIN})


@dataclass(frozen=True)
class AccessContext:
    """Who is asking, threaded explicitly through every store call.

    Attributes:
        user_id: Opaque identifier of the authenticated user.
        role: The user's role.
    """

    user_id: str
    role: Role

    @classmethod
    def from_headers(cls, user_id: str | None, role: str | None) -> AccessContext:
        """Build a context from the values an upstream proxy forwards.

        Raises:
            AccessDeniedError: If either value is missing or the role is unknown.
        """
        if not user_id or not role:
            raise AccessDeniedError("Missing user identity")
        try:
            parsed = Role(role.strip().lower())
        except ValueError as exc:
            raise AccessDeniedError(f"Unknown role: {role!r}") from exc
        return cls(user_id=user_id, role=parsed)

    def require_read(self) -> None:
        if self.role not in _READ_ROLES:
            raise AccessDeniedError("Insufficient permissions to read drug interactions")

    def require_write(self) -> None:
        if self.role not in _WRITE_ROLES:
            raise AccessDeniedError("Only administrators can modify drug interactions")
