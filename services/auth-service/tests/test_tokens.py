"""Tests for access/refresh token issuance and verification."""

from __future__ import annotations

import jwt
import pytest

from tenant_auth.config import ConfigurationError, Settings
from tenant_auth.domain.account import Account, PlatformRole, TenantMembership, TenantRole
from tenant_auth.domain.claims import MembershipClaims, PlatformClaims, RefreshClaims, TenantScopedClaims
from tenant_auth.domain.results import TokenExpired, TokenInvalid
from tenant_auth.security.tokens import SigningKeyring, TokenService

from conftest import SIGNING_SECRET


@pytest.fixture
def tokens(settings, clock) -> TokenService:
    return TokenService.from_settings(settings, clock=clock)


@pytest.fixture
def account() -> Account:
    return Account(
        account_id="acc-1",
        email="staff@tenant.example.com",
        password_hash="unused",
        must_change_password=False,
    )


def _membership(tenant_id: str, role: TenantRole, active: bool = True) -> TenantMembership:
    return TenantMembership(
        membership_id=f"m-{tenant_id}",
        account_id="acc-1",
        tenant_id=tenant_id,
        role=role,
        active=active,
    )


def test_access_token_without_memberships_decodes_to_platform_claims(tokens, account):
    issued = tokens.issue_access_token(account)
    claims = tokens.verify_access(issued.token)
    assert isinstance(claims, PlatformClaims)
    assert claims.subject == "acc-1"
    assert claims.email == "staff@tenant.example.com"
    assert claims.platform_role is PlatformRole.USER
    assert issued.expires_in == 86400


def test_access_token_lists_only_active_memberships(tokens, account):
    issued = tokens.issue_access_token(
        account,
        [
            _membership("t-1", TenantRole.MANAGER),
            _membership("t-2", TenantRole.ADMIN, active=False),
        ],
    )
    claims = tokens.verify_access(issued.token)
    assert isinstance(claims, MembershipClaims)
    assert claims.role_in("t-1") is TenantRole.MANAGER
    assert claims.role_in("t-2") is None


def test_tenant_scoped_token_carries_single_tenant(tokens, account):
    issued = tokens.issue_access_token(
        account,
        [_membership("t-1", TenantRole.STAFF), _membership("t-2", TenantRole.ADMIN)],
        scope_tenant_id="t-1",
    )
    claims = tokens.verify_access(issued.token)
    assert isinstance(claims, TenantScopedClaims)
    assert claims.tenant_id == "t-1"
    assert claims.tenant_role is TenantRole.STAFF


def test_must_change_flag_round_trips(tokens, account):
    account.must_change_password = True
    claims = tokens.verify_access(tokens.issue_access_token(account).token)
    assert claims.must_change_password is True


def test_access_token_expires_exactly_at_ttl(tokens, account, clock):
    issued = tokens.issue_access_token(account)
    clock.advance(seconds=tokens.access_ttl_seconds - 1)
    assert isinstance(tokens.verify_access(issued.token), PlatformClaims)
    clock.advance(seconds=1)
    assert isinstance(tokens.verify_access(issued.token), TokenExpired)


def test_refresh_token_round_trip_and_expiry(tokens, account, clock):
    issued = tokens.issue_refresh_token(account, scope_tenant_id="t-9")
    claims = tokens.verify_refresh(issued.token)
    assert isinstance(claims, RefreshClaims)
    assert claims.subject == "acc-1"
    assert claims.tenant_id == "t-9"
    clock.advance(days=7)
    assert isinstance(tokens.verify_refresh(issued.token), TokenExpired)


def test_token_types_are_not_interchangeable(tokens, account):
    access = tokens.issue_access_token(account).token
    refresh = tokens.issue_refresh_token(account).token
    assert isinstance(tokens.verify_refresh(access), TokenInvalid)
    assert isinstance(tokens.verify_access(refresh), TokenInvalid)


def test_tampered_or_garbage_tokens_are_invalid(tokens, account):
    token = tokens.issue_access_token(account).token
    header, payload, signature = token.split(".")
    flipped = "B" if signature[5] == "A" else "A"
    tampered = ".".join([header, payload, signature[:5] + flipped + signature[6:]])
    assert isinstance(tokens.verify_access(tampered), TokenInvalid)
    assert isinstance(tokens.verify_access("not-a-jwt"), TokenInvalid)
    assert isinstance(tokens.verify_access(""), TokenInvalid)


def test_token_from_foreign_issuer_is_invalid(tokens, clock):
    forged = jwt.encode(
        {
            "iss": "someone-else",
            "sub": "acc-1",
            "type": "access",
            "iat": int(clock().timestamp()),
            "exp": int(clock().timestamp()) + 60,
        },
        SIGNING_SECRET,
        algorithm="HS256",
        headers={"kid": "test-key"},
    )
    assert isinstance(tokens.verify_access(forged), TokenInvalid)


def test_rotated_key_keeps_verifying_during_grace_window(settings, clock, account):
    old_service = TokenService.from_settings(settings, clock=clock)
    token = old_service.issue_access_token(account).token

    rotated = Settings(
        jwt_secret="a-brand-new-signing-secret-for-the-next-period",
        jwt_key_id="next-key",
        jwt_previous_keys=f"test-key:{SIGNING_SECRET}",
        jwt_issuer=settings.jwt_issuer,
    )
    new_service = TokenService.from_settings(rotated, clock=clock)
    assert isinstance(new_service.verify_access(token), PlatformClaims)
    assert jwt.get_unverified_header(new_service.issue_access_token(account).token)["kid"] == "next-key"

    retired = Settings(
        jwt_secret="a-brand-new-signing-secret-for-the-next-period",
        jwt_key_id="next-key",
        jwt_previous_keys="",
        jwt_issuer=settings.jwt_issuer,
    )
    assert isinstance(TokenService.from_settings(retired, clock=clock).verify_access(token), TokenInvalid)


def test_keyring_requires_signing_secret():
    with pytest.raises(ConfigurationError):
        SigningKeyring.from_settings(Settings(jwt_secret=""))


def test_keyring_rejects_malformed_previous_keys():
    with pytest.raises(ConfigurationError):
        SigningKeyring.from_settings(Settings(jwt_secret="secret-value", jwt_previous_keys="missing-separator"))
