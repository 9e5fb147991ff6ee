"""
access_roster.tenancy

Tenant integrity guard for new assignments.

Responsibilities:
- Decide whether a subject and a target may be related under multitenancy.
- Report the tenant key that should be persisted on the new record.
"""

from __future__ import annotations

from access_roster.errors import TenantIntegrityViolation
from access_roster.identity import IdentityRef


class TenantGuard:
    def __init__(self, *, enabled: bool) -> None:
        self.enabled = enabled

    def validate(self, subject: IdentityRef, target: IdentityRef) -> str | None:
        """
        Rules, in order:
        - neither side has a tenant: allowed, nothing persisted
        - one side missing a tenant: rejected, naming that side
        - tenants differ: rejected as cross-tenant access
        - tenants match: allowed, the shared key is persisted
        """

        if not self.enabled:
            return None
        subject_tenant = subject.tenant_key
        target_tenant = target.tenant_key
        if subject_tenant is None and target_tenant is None:
            return None
        if subject_tenant is None:
            raise TenantIntegrityViolation.subject_without_tenant(target_tenant)
        if target_tenant is None:
            raise TenantIntegrityViolation.target_without_tenant(subject_tenant)
        if subject_tenant != target_tenant:
            raise TenantIntegrityViolation.mismatch(subject_tenant, target_tenant)
        return subject_tenant


# --- Module Notes -----------------------------------------------------------
# The store skips this guard for pairs that already hold an assignment; an established
# relationship is not re-validated when the subject later switches tenants.
