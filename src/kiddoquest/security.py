"""Identity provider contract and the parent/child role checks.

Credentials are never handled here.  An external identity provider
authenticates the user and hands the engine an :class:`Identity`; the engine
trusts its ``role`` claim and only checks ownership of children itself.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Protocol

from .exceptions import AuthorizationError, ValidationError
from .models import Role


@dataclass(frozen=True, slots=True)
class Identity:
    """Authenticated caller: a stable user id plus a role claim."""

    user_id: str
    role: Role

    def __post_init__(self) -> None:
        if not self.user_id or not self.user_id.strip():
            raise ValidationError("Identity requires a user id.")
        try:
            object.__setattr__(self, "role", Role(self.role))
        except ValueError as exc:
            raise ValidationError(f"Unknown role {self.role!r}.") from exc

    @property
    def is_parent(self) -> bool:
        return self.role is Role.PARENT

    @property
    def is_child(self) -> bool:
        return self.role is Role.CHILD

    @classmethod
    def parent(cls, user_id: str) -> "Identity":
        return cls(user_id=user_id, role=Role.PARENT)

    @classmethod
    def child(cls, user_id: str) -> "Identity":
        return cls(user_id=user_id, role=Role.CHILD)


class IdentityProvider(Protocol):
    """Anything that can turn a request context into an :class:`Identity`."""

    def authenticate(self, context: Any = None) -> Identity:
        ...


class StaticIdentityProvider:
    """Identity provider that always returns the same caller (scripts, tests)."""

    def __init__(self, identity: Identity) -> None:
        self._identity = identity

    def authenticate(self, context: Any = None) -> Identity:
        return self._identity


class HeaderIdentityProvider:
    """Read the identity an upstream gateway placed in request headers."""

    def __init__(self, *, user_header: str = "x-user-id", role_header: str = "x-user-role") -> None:
        self.user_header = user_header.lower()
        self.role_header = role_header.lower()

    def authenticate(self, context: Any = None) -> Identity:
        headers: Mapping[str, str] = getattr(context, "headers", None) or {}
        normalized: Dict[str, str] = {key.lower(): value for key, value in headers.items()}
        user_id = normalized.get(self.user_header)
        role = normalized.get(self.role_header)
        if not user_id or not role:
            raise AuthorizationError("Request is missing identity headers.")
        try:
            return Identity(user_id=user_id, role=Role(role.strip().lower()))
        except (ValueError, ValidationError) as exc:
            raise AuthorizationError(f"Invalid identity role {role!r}.") from exc


def require_parent(identity: Identity) -> str:
    """Return the parent's user id or raise :class:`AuthorizationError`."""

    if not identity.is_parent:
        raise AuthorizationError("Only a parent can perform this action.")
    return identity.user_id


def require_child_or_owner(identity: Identity, child_id: str, owner_id: Optional[str]) -> None:
    """Allow the child itself, or the parent that owns the child."""

    if identity.is_child and identity.user_id == child_id:
        return
    if identity.is_parent and owner_id is not None and identity.user_id == owner_id:
        return
    raise AuthorizationError(f"'{identity.user_id}' cannot act for child '{child_id}'.")


__all__ = [
    "HeaderIdentityProvider",
    "Identity",
    "IdentityProvider",
    "StaticIdentityProvider",
    "require_child_or_owner",
    "require_parent",
]
