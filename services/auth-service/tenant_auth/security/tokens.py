"""Utilities for issuing and validating application JWTs."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Union

import jwt

from ..clock import Clock, utc_now
from ..config import ConfigurationError, Settings
from ..domain.account import Account, PlatformRole, TenantMembership, TenantRole
from ..domain.claims import (
    Claims,
    MembershipClaim,
    MembershipClaims,
    PlatformClaims,
    RefreshClaims,
    TenantScopedClaims,
)
from ..domain.results import TokenExpired, TokenInvalid

logger = logging.getLogger(__name__)

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"

TokenFailure = Union[TokenInvalid, TokenExpired]


@dataclass(frozen=True)
class SigningKeyring:
    """Signing secrets indexed by key id.

    New tokens are always signed with ``current_kid``; any other key in
    ``keys`` is still accepted for verification so a rotated-out secret keeps
    working for the remainder of its grace window.
    """

    current_kid: str
    keys: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings: Settings) -> "SigningKeyring":
        """Build the keyring once at startup, refusing to run without a secret."""
        if not settings.jwt_secret:
            raise ConfigurationError("JWT_SECRET must be set before the service can start")
        keys = settings.previous_signing_keys()
        if settings.jwt_key_id in keys:
            raise ConfigurationError(
                f"key id {settings.jwt_key_id!r} is listed as both current and previous"
            )
        keys[settings.jwt_key_id] = settings.jwt_secret
        return cls(current_kid=settings.jwt_key_id, keys=keys)

    @property
    def signing_key(self) -> str:
        return self.keys[self.current_kid]

    def lookup(self, kid: str | None) -> str | None:
        """Return the secret for ``kid``; tokens without a kid use the current key."""
        if kid is None:
            return self.signing_key
        return self.keys.get(kid)


@dataclass(slots=True)
class IssuedToken:
    token: str
    expires_in: int
    expires_at: datetime


class TokenService:
    """Signs and verifies access and refresh tokens.

    Verification is pure computation: no I/O, safe to call concurrently.
    Expiry is compared against the injected clock rather than PyJWT's own
    wall clock so boundaries are testable.
    """

    def __init__(
        self,
        keyring: SigningKeyring,
        *,
        issuer: str,
        access_ttl_seconds: int = 86400,
        refresh_ttl_seconds: int = 604800,
        algorithm: str = "HS256",
        clock: Clock = utc_now,
    ) -> None:
        self._keyring = keyring
        self._issuer = issuer
        self._access_ttl = access_ttl_seconds
        self._refresh_ttl = refresh_ttl_seconds
        self._algorithm = algorithm
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock = utc_now) -> "TokenService":
        return cls(
            SigningKeyring.from_settings(settings),
            issuer=settings.jwt_issuer,
            access_ttl_seconds=settings.access_ttl_seconds,
            refresh_ttl_seconds=settings.refresh_ttl_seconds,
            algorithm=settings.jwt_algorithm,
            clock=clock,
        )

    @property
    def access_ttl_seconds(self) -> int:
        return self._access_ttl

    @property
    def refresh_ttl_seconds(self) -> int:
        return self._refresh_ttl

    def issue_access_token(
        self,
        account: Account,
        memberships: Iterable[TenantMembership] = (),
        scope_tenant_id: str | None = None,
    ) -> IssuedToken:
        """Create a signed access token for ``account``.

        Parameters
        ----------
        account:
            Authenticated account; its id, email, platform role and forced
            password change flag are embedded.
        memberships:
            Current memberships of the account. Inactive entries are dropped.
        scope_tenant_id:
            When set, the token is a tenant-portal session carrying only this
            tenant and the account's role in it, instead of the full
            membership list.

        Returns
        -------
        IssuedToken
            The encoded JWT along with its TTL and absolute expiry.
        """
        active = [
            membership
            for membership in memberships
            if membership.active and membership.account_id == account.account_id
        ]
        payload: dict[str, Any] = {
            "type": ACCESS_TOKEN_TYPE,
            "sub": account.account_id,
            "email": account.email,
            "role": account.platform_role.value,
            "mustChangePassword": account.must_change_password,
        }
        if scope_tenant_id is not None:
            tenant_role = next(
                (membership.role for membership in active if membership.tenant_id == scope_tenant_id),
                None,
            )
            payload["tenantId"] = scope_tenant_id
            payload["tenantRole"] = tenant_role.value if tenant_role else None
        else:
            payload["tenantMemberships"] = [
                {"tenantId": membership.tenant_id, "role": membership.role.value}
                for membership in active
            ]
        return self._sign(payload, self._access_ttl)

    def issue_refresh_token(self, account: Account, scope_tenant_id: str | None = None) -> IssuedToken:
        """Create a refresh token carrying only identity and tenant scope."""
        payload: dict[str, Any] = {"type": REFRESH_TOKEN_TYPE, "sub": account.account_id}
        if scope_tenant_id is not None:
            payload["tenantId"] = scope_tenant_id
        return self._sign(payload, self._refresh_ttl)

    def verify_access(self, token: str) -> Claims | TokenFailure:
        """Verify an access token and decode it into one of the claim shapes."""
        payload = self._decode(token)
        if isinstance(payload, (TokenInvalid, TokenExpired)):
            return payload
        if payload.get("type") != ACCESS_TOKEN_TYPE:
            return TokenInvalid(message="Token is not an access token")
        try:
            return self._access_claims(payload)
        except (KeyError, TypeError, ValueError, OverflowError, OSError):
            logger.info("access token for %s carried malformed claims", payload.get("sub"))
            return TokenInvalid()

    def verify_refresh(self, token: str) -> RefreshClaims | TokenFailure:
        """Verify a refresh token; access tokens presented here are rejected."""
        payload = self._decode(token)
        if isinstance(payload, (TokenInvalid, TokenExpired)):
            return payload
        if payload.get("type") != REFRESH_TOKEN_TYPE:
            return TokenInvalid(message="Token is not a refresh token")
        tenant_id = payload.get("tenantId")
        try:
            return RefreshClaims(
                subject=str(payload["sub"]),
                issued_at=_from_timestamp(payload["iat"]),
                expires_at=_from_timestamp(payload["exp"]),
                tenant_id=str(tenant_id) if tenant_id is not None else None,
            )
        except (TypeError, ValueError, OverflowError, OSError):
            return TokenInvalid()

    def _sign(self, claims: dict[str, Any], ttl_seconds: int) -> IssuedToken:
        now = int(self._clock().timestamp())
        payload = {"iss": self._issuer, "iat": now, "exp": now + ttl_seconds, **claims}
        token = jwt.encode(
            payload,
            self._keyring.signing_key,
            algorithm=self._algorithm,
            headers={"kid": self._keyring.current_kid},
        )
        return IssuedToken(
            token=token,
            expires_in=ttl_seconds,
            expires_at=_from_timestamp(now) + timedelta(seconds=ttl_seconds),
        )

    def _decode(self, token: str) -> dict[str, Any] | TokenFailure:
        try:
            header = jwt.get_unverified_header(token)
        except jwt.InvalidTokenError:
            return TokenInvalid()
        kid = header.get("kid")
        if kid is not None and not isinstance(kid, str):
            return TokenInvalid()
        key = self._keyring.lookup(kid)
        if key is None:
            return TokenInvalid(message="Token signed with an unknown key")
        try:
            payload = jwt.decode(
                token,
                key,
                algorithms=[self._algorithm],
                issuer=self._issuer,
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "require": ["sub", "exp", "iat", "type"],
                },
            )
        except jwt.InvalidTokenError as exc:
            logger.debug("token rejected: %s", exc)
            return TokenInvalid()

        exp = payload["exp"]
        if isinstance(exp, bool) or not isinstance(exp, (int, float)):
            return TokenInvalid()
        if self._clock().timestamp() >= exp:
            return TokenExpired()
        return payload

    def _access_claims(self, payload: dict[str, Any]) -> Claims:
        subject = str(payload["sub"])
        email = str(payload["email"])
        platform_role = PlatformRole(payload["role"])
        issued_at = _from_timestamp(payload["iat"])
        expires_at = _from_timestamp(payload["exp"])
        must_change = bool(payload.get("mustChangePassword", False))

        if "tenantId" in payload:
            tenant_role = payload.get("tenantRole")
            return TenantScopedClaims(
                subject=subject,
                email=email,
                platform_role=platform_role,
                issued_at=issued_at,
                expires_at=expires_at,
                tenant_id=str(payload["tenantId"]),
                tenant_role=TenantRole(tenant_role) if tenant_role else None,
                must_change_password=must_change,
            )

        memberships = tuple(
            MembershipClaim(tenant_id=str(entry["tenantId"]), role=TenantRole(entry["role"]))
            for entry in payload.get("tenantMemberships") or []
        )
        if memberships:
            return MembershipClaims(
                subject=subject,
                email=email,
                platform_role=platform_role,
                issued_at=issued_at,
                expires_at=expires_at,
                memberships=memberships,
                must_change_password=must_change,
            )
        return PlatformClaims(
            subject=subject,
            email=email,
            platform_role=platform_role,
            issued_at=issued_at,
            expires_at=expires_at,
            must_change_password=must_change,
        )


def _from_timestamp(value: int | float) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)
