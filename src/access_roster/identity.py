"""
access_roster.identity

Polymorphic identity references for subjects and targets.

Responsibilities:
- Represent an entity as `(type_tag, id)` with an optional tenant context.
- Normalize identifiers to opaque strings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True, slots=True)
class IdentityRef:
    type_tag: str
    id: str
    # Tenant context does not take part in identity equality.
    tenant_key: str | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.type_tag, str) or not self.type_tag:
            raise ValueError("identity type_tag must be a non-empty string")
        if self.id is None:
            raise ValueError(f"{self.type_tag} identity has no id")
        object.__setattr__(self, "id", str(self.id))
        if not self.id:
            raise ValueError(f"{self.type_tag} identity has an empty id")
        if self.tenant_key is not None:
            object.__setattr__(self, "tenant_key", str(self.tenant_key))

    @classmethod
    def of(cls, type_tag: str, id: Any, tenant_key: Any = None) -> IdentityRef:
        return cls(type_tag, id, None if tenant_key is None else str(tenant_key))

    def with_tenant(self, tenant_key: str | None) -> IdentityRef:
        return IdentityRef(self.type_tag, self.id, tenant_key)

    def __str__(self) -> str:
        return f"{self.type_tag}:{self.id}"


@runtime_checkable
class SupportsIdentity(Protocol):
    def roster_identity(self) -> IdentityRef: ...


# --- Module Notes -----------------------------------------------------------
# ORM instances are turned into references by `planner.EntityRegistry.ref_for`;
# plain domain objects can implement `roster_identity()` instead.
