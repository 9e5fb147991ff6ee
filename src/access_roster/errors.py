"""
access_roster.errors

Error taxonomy raised by the roster engine.

Responsibilities:
- Separate usage errors (unknown role) from data-integrity errors (undecodable keys).
- Carry enough context for callers to render a useful message.
"""

from __future__ import annotations

from dataclasses import dataclass


class RosterError(Exception):
    """Base class; every engine error is recoverable by the caller."""


class RoleNotFound(RosterError):
    def __init__(self, identifier: object) -> None:
        super().__init__(f"role not found: {identifier!r}")
        self.identifier = identifier


class RoleRegistrationError(RosterError):
    pass


class CodecError(RosterError):
    # A persisted key could not be decoded under the active storage mode.
    pass


class DuplicateAssignmentConflict(RosterError):
    pass


class MisconfiguredMultitenancy(RosterError):
    pass


@dataclass(eq=False)
class TenantIntegrityViolation(RosterError):
    reason: str
    subject_tenant: str | None = None
    target_tenant: str | None = None

    def __post_init__(self) -> None:
        super().__init__(self.reason)

    @classmethod
    def mismatch(cls, subject_tenant: str, target_tenant: str) -> TenantIntegrityViolation:
        return cls(
            f"tenant access denied: subject tenant {subject_tenant!r} "
            f"does not match target tenant {target_tenant!r}",
            subject_tenant,
            target_tenant,
        )

    @classmethod
    def subject_without_tenant(cls, target_tenant: str) -> TenantIntegrityViolation:
        return cls("subject has no tenant context but the target does", None, target_tenant)

    @classmethod
    def target_without_tenant(cls, subject_tenant: str) -> TenantIntegrityViolation:
        return cls("target has no tenant context but the subject does", subject_tenant, None)

    @property
    def missing_side(self) -> str | None:
        if self.subject_tenant is None and self.target_tenant is not None:
            return "subject"
        if self.target_tenant is None and self.subject_tenant is not None:
            return "target"
        return None
