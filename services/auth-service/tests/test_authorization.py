"""Tests for platform and tenant scope resolution."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from tenant_auth.domain.account import PlatformRole, TenantRole
from tenant_auth.domain.claims import MembershipClaim, MembershipClaims, PlatformClaims, TenantScopedClaims
from tenant_auth.domain.results import InsufficientRole, MustChangePassword
from tenant_auth.security.authorization import (
    ChangeOwnPassword,
    PlatformAdminOrAbove,
    PlatformSuperAdmin,
    TenantAccess,
    authorize,
    tenant_role_for,
)

ISSUED = datetime(2026, 3, 1, tzinfo=timezone.utc)
EXPIRES = datetime(2026, 3, 2, tzinfo=timezone.utc)


def platform(role: PlatformRole, must_change: bool = False) -> PlatformClaims:
    return PlatformClaims(
        subject="acc",
        email="acc@test",
        platform_role=role,
        issued_at=ISSUED,
        expires_at=EXPIRES,
        must_change_password=must_change,
    )


def scoped(tenant_id: str, role: TenantRole | None, platform_role: PlatformRole = PlatformRole.USER):
    return TenantScopedClaims(
        subject="acc",
        email="acc@test",
        platform_role=platform_role,
        issued_at=ISSUED,
        expires_at=EXPIRES,
        tenant_id=tenant_id,
        tenant_role=role,
    )


def member_of(**roles: TenantRole) -> MembershipClaims:
    return MembershipClaims(
        subject="acc",
        email="acc@test",
        platform_role=PlatformRole.USER,
        issued_at=ISSUED,
        expires_at=EXPIRES,
        memberships=tuple(MembershipClaim(tenant_id=tenant, role=role) for tenant, role in roles.items()),
    )


@pytest.mark.parametrize(
    "claims, scope, allowed",
    [
        (platform(PlatformRole.SUPER_ADMIN), PlatformSuperAdmin(), True),
        (platform(PlatformRole.ADMIN), PlatformSuperAdmin(), False),
        (platform(PlatformRole.ADMIN), PlatformAdminOrAbove(), True),
        (platform(PlatformRole.SUPER_ADMIN), PlatformAdminOrAbove(), True),
        (platform(PlatformRole.USER), PlatformAdminOrAbove(), False),
        (scoped("t1", TenantRole.MANAGER), TenantAccess("t1", TenantRole.STAFF), True),
        (scoped("t1", TenantRole.MANAGER), TenantAccess("t1", TenantRole.MANAGER), True),
        (scoped("t1", TenantRole.MANAGER), TenantAccess("t1", TenantRole.ADMIN), False),
        (scoped("t1", TenantRole.ADMIN), TenantAccess("t2", TenantRole.STAFF), False),
        (member_of(t1=TenantRole.STAFF, t2=TenantRole.ADMIN), TenantAccess("t2", TenantRole.ADMIN), True),
        (member_of(t1=TenantRole.STAFF), TenantAccess("t1", TenantRole.MANAGER), False),
        (platform(PlatformRole.SUPER_ADMIN), TenantAccess("any", TenantRole.ADMIN), True),
        (platform(PlatformRole.ADMIN), TenantAccess("any", TenantRole.STAFF), False),
        (scoped("t1", None, PlatformRole.SUPER_ADMIN), TenantAccess("t1", TenantRole.ADMIN), True),
    ],
)
def test_authorize_matrix(claims, scope, allowed):
    decision = authorize(claims, scope)
    assert bool(decision) is allowed
    if not allowed:
        assert isinstance(decision.error, InsufficientRole)


def test_restricted_session_may_only_change_password():
    claims = platform(PlatformRole.SUPER_ADMIN, must_change=True)
    assert authorize(claims, ChangeOwnPassword())
    for scope in (PlatformSuperAdmin(), PlatformAdminOrAbove(), TenantAccess("t1")):
        decision = authorize(claims, scope)
        assert not decision
        assert isinstance(decision.error, MustChangePassword)


def test_tenant_role_for_each_claim_shape():
    assert tenant_role_for(scoped("t1", TenantRole.STAFF), "t1") is TenantRole.STAFF
    assert tenant_role_for(scoped("t1", TenantRole.STAFF), "t2") is None
    assert tenant_role_for(member_of(t3=TenantRole.ADMIN), "t3") is TenantRole.ADMIN
    assert tenant_role_for(platform(PlatformRole.ADMIN), "t1") is None


def test_unknown_scope_is_a_programming_error():
    with pytest.raises(TypeError):
        authorize(platform(PlatformRole.USER), object())
