from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from app.schemas.workflow import ActorRole


SYSTEM_ACTOR_ID = "system"

_ROLE_PRIORITY = (
    ActorRole.SYSTEM,
    ActorRole.ADMIN,
    ActorRole.UNIVERSITY,
    ActorRole.IMMIGRATION,
    ActorRole.PARTNER,
)


def _parse_role(value: Any) -> ActorRole:
    if isinstance(value, ActorRole):
        return value
    text = str(value).strip().lower()
    for role in ActorRole:
        if role.value.lower() == text or role.name.lower() == text:
            return role
    raise ValueError(f"Unknown actor role: {value!r}")


@dataclass(frozen=True, slots=True)
class Actor:
    """Caller identity with role claims already verified upstream."""

    id: str
    roles: frozenset[ActorRole]
    can_override: bool = False
    display_name: str | None = None

    @classmethod
    def system(cls) -> Actor:
        return cls(
            id=SYSTEM_ACTOR_ID,
            roles=frozenset({ActorRole.SYSTEM}),
            can_override=True,
            display_name="System",
        )

    @classmethod
    def from_claims(cls, claims: Mapping[str, Any]) -> Actor:
        subject = claims.get("sub")
        if not subject:
            raise ValueError("Token subject missing")
        raw_roles = claims.get("roles") or []
        if isinstance(raw_roles, str):
            raw_roles = [raw_roles]
        roles = frozenset(_parse_role(role) for role in raw_roles)
        if not roles:
            raise ValueError("Token carries no workflow roles")
        if ActorRole.SYSTEM in roles:
            raise ValueError("System role cannot be asserted by a token")
        return cls(
            id=str(subject),
            roles=roles,
            can_override=bool(claims.get("override", False)),
            display_name=claims.get("name"),
        )

    def has_role(self, role: ActorRole) -> bool:
        return role in self.roles

    @property
    def role(self) -> ActorRole:
        for role in _ROLE_PRIORITY:
            if role in self.roles:
                return role
        raise ValueError("Actor has no roles")

    @property
    def is_system(self) -> bool:
        return ActorRole.SYSTEM in self.roles

    @property
    def label(self) -> str:
        return self.role.value
