"""Session claims decoded from verified tokens.

Access tokens decode into exactly one of three shapes:

* ``PlatformClaims`` - no tenant context (platform administrators, or accounts
  without memberships).
* ``TenantScopedClaims`` - a tenant-portal session bound to one tenant.
* ``MembershipClaims`` - a platform session listing every active membership.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Union

from .account import PlatformRole, TenantRole


@dataclass(frozen=True, slots=True)
class MembershipClaim:
    tenant_id: str
    role: TenantRole


@dataclass(frozen=True, slots=True)
class PlatformClaims:
    subject: str
    email: str
    platform_role: PlatformRole
    issued_at: datetime
    expires_at: datetime
    must_change_password: bool = False


@dataclass(frozen=True, slots=True)
class TenantScopedClaims:
    subject: str
    email: str
    platform_role: PlatformRole
    issued_at: datetime
    expires_at: datetime
    tenant_id: str
    # None when a super admin opens a tenant session without a membership
    tenant_role: TenantRole | None = None
    must_change_password: bool = False


@dataclass(frozen=True, slots=True)
class MembershipClaims:
    subject: str
    email: str
    platform_role: PlatformRole
    issued_at: datetime
    expires_at: datetime
    memberships: tuple[MembershipClaim, ...] = ()
    must_change_password: bool = False

    def role_in(self, tenant_id: str) -> TenantRole | None:
        for membership in self.memberships:
            if membership.tenant_id == tenant_id:
                return membership.role
        return None


@dataclass(frozen=True, slots=True)
class RefreshClaims:
    """Minimal claim set of a refresh token: identity and optional tenant scope."""

    subject: str
    issued_at: datetime
    expires_at: datetime
    tenant_id: str | None = None


Claims = Union[PlatformClaims, TenantScopedClaims, MembershipClaims]
