"""Grantor privilege checks surfaced at the grant service boundary."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable
from uuid import UUID

from .errors import GrantAuthorizationError


@dataclass(frozen=True, slots=True)
class Actor:
    """Authenticated caller forwarded by the API gateway."""

    user_id: UUID
    role: str | None = None


class RoleBasedAuthorizer:
    """Grants the grantor privilege to a configured set of roles."""

    def __init__(self, grantor_roles: Iterable[str]) -> None:
        self._grantor_roles = frozenset(role.strip().lower() for role in grantor_roles if role.strip())

    def is_grantor(self, actor: Actor) -> bool:
        return (actor.role or "").strip().lower() in self._grantor_roles

    def ensure_grantor(self, actor: Actor) -> Actor:
        if not self.is_grantor(actor):
            raise GrantAuthorizationError(
                f"Role {actor.role or 'none'!r} may not grant, extend or revoke region access"
            )
        return actor


__all__ = ["Actor", "RoleBasedAuthorizer"]
