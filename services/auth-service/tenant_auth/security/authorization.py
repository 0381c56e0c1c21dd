"""Role resolution for platform-level and tenant-level scopes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from ..domain.account import (
    PLATFORM_ROLE_RANK,
    TENANT_ROLE_RANK,
    PlatformRole,
    TenantRole,
)
from ..domain.claims import Claims, MembershipClaims, PlatformClaims, TenantScopedClaims
from ..domain.results import AuthError, InsufficientRole, MustChangePassword


@dataclass(frozen=True, slots=True)
class PlatformSuperAdmin:
    pass


@dataclass(frozen=True, slots=True)
class PlatformAdminOrAbove:
    pass


@dataclass(frozen=True, slots=True)
class TenantAccess:
    tenant_id: str
    minimum_role: TenantRole = TenantRole.STAFF


@dataclass(frozen=True, slots=True)
class ChangeOwnPassword:
    """The one operation a restricted (forced change) session may perform."""


Scope = Union[PlatformSuperAdmin, PlatformAdminOrAbove, TenantAccess, ChangeOwnPassword]


@dataclass(frozen=True, slots=True)
class AuthorizationDecision:
    allowed: bool
    error: AuthError | None = None

    def __bool__(self) -> bool:
        return self.allowed


ALLOWED = AuthorizationDecision(allowed=True)


def _deny(error: AuthError) -> AuthorizationDecision:
    return AuthorizationDecision(allowed=False, error=error)


def tenant_role_for(claims: Claims, tenant_id: str) -> TenantRole | None:
    """Return the caller's role in ``tenant_id`` according to its claims."""
    if isinstance(claims, TenantScopedClaims):
        return claims.tenant_role if claims.tenant_id == tenant_id else None
    if isinstance(claims, MembershipClaims):
        return claims.role_in(tenant_id)
    if isinstance(claims, PlatformClaims):
        return None
    raise TypeError(f"unsupported claims type {type(claims).__name__}")


def authorize(claims: Claims, scope: Scope) -> AuthorizationDecision:
    """Decide whether ``claims`` satisfy ``scope``.

    Denials are returned, never raised. A session still flagged for a forced
    password change is denied everything but ``ChangeOwnPassword``. Platform
    super admins satisfy every tenant check regardless of membership.
    """
    if isinstance(scope, ChangeOwnPassword):
        return ALLOWED
    if claims.must_change_password:
        return _deny(MustChangePassword())

    rank = PLATFORM_ROLE_RANK[claims.platform_role]
    if isinstance(scope, PlatformSuperAdmin):
        if claims.platform_role is PlatformRole.SUPER_ADMIN:
            return ALLOWED
        return _deny(InsufficientRole(message="Super admin role required"))
    if isinstance(scope, PlatformAdminOrAbove):
        if rank >= PLATFORM_ROLE_RANK[PlatformRole.ADMIN]:
            return ALLOWED
        return _deny(InsufficientRole(message="Platform admin role required"))
    if isinstance(scope, TenantAccess):
        if claims.platform_role is PlatformRole.SUPER_ADMIN:
            return ALLOWED
        tenant_role = tenant_role_for(claims, scope.tenant_id)
        if tenant_role is None:
            return _deny(InsufficientRole(message="Not a member of this tenant"))
        if TENANT_ROLE_RANK[tenant_role] >= TENANT_ROLE_RANK[scope.minimum_role]:
            return ALLOWED
        return _deny(
            InsufficientRole(message=f"Tenant role {scope.minimum_role.value} or above required")
        )
    raise TypeError(f"unsupported scope {type(scope).__name__}")
