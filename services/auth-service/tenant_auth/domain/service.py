"""Auth service orchestrating credentials, lockout, token issuance and auditing."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Union

from platform_schemas import AuthAuditEvent, AuthEventType

from .account import PLATFORM_ROLE_RANK, Account, PlatformRole, TenantMembership, TenantRole
from .claims import Claims, TenantScopedClaims
from .contracts import NewAccountRecord, ProvisionAccountInput
from .password_lifecycle import PasswordLifecycle
from .results import (
    AccountInactive,
    AccountNotFound,
    AuthError,
    EmailAlreadyRegistered,
    ForcedReset,
    InsufficientRole,
    InvalidCredentials,
    LoginResult,
    PasswordChanged,
    PasswordResetRequested,
    ProvisionedAccount,
    RefreshResult,
    TenantNotFound,
    TokenInvalid,
    TokenPair,
    WeakPassword,
)
from .. import metrics
from ..clock import Clock, utc_now
from ..config import Settings
from ..repository import AccountRepository
from ..security.authorization import AuthorizationDecision, Scope, authorize
from ..security.lockout import LockoutTracker
from ..security.passwords import CredentialManager
from ..security.tokens import TokenService

logger = logging.getLogger(__name__)

LoginOutcome = Union[LoginResult, AuthError]


class AuthService:
    """Caller-facing authentication workflows backed by Postgres storage."""

    def __init__(
        self,
        repository: AccountRepository,
        *,
        credentials: CredentialManager,
        tokens: TokenService,
        lockout: LockoutTracker,
        lifecycle: PasswordLifecycle,
        clock: Clock = utc_now,
    ) -> None:
        """Store dependencies used to orchestrate persistence and token issuance."""
        self._repository = repository
        self._credentials = credentials
        self._tokens = tokens
        self._lockout = lockout
        self._lifecycle = lifecycle
        self._clock = clock

    @classmethod
    def from_settings(
        cls, repository: AccountRepository, settings: Settings, clock: Clock = utc_now
    ) -> "AuthService":
        """Wire the collaborators from one settings object.

        Raises ``ConfigurationError`` when no signing secret is configured.
        """
        credentials = CredentialManager(rounds=settings.bcrypt_rounds)
        return cls(
            repository,
            credentials=credentials,
            tokens=TokenService.from_settings(settings, clock=clock),
            lockout=LockoutTracker(
                repository,
                threshold=settings.lockout_threshold,
                lockout_seconds=settings.lockout_duration_seconds,
                clock=clock,
            ),
            lifecycle=PasswordLifecycle(repository, credentials, clock=clock),
            clock=clock,
        )

    @property
    def clock(self) -> Clock:
        return self._clock

    def login(
        self,
        email: str,
        password: str,
        tenant_slug: str | None = None,
        *,
        required_role: PlatformRole | None = None,
    ) -> LoginOutcome:
        """Authenticate by email and password.

        Parameters
        ----------
        email:
            Account email; matched case-insensitively.
        password:
            Plain-text password to verify.
        tenant_slug:
            Slug or subdomain of the tenant portal being signed into. When
            given, the session is scoped to that tenant and the account must
            hold an active membership there (platform super admins excepted).
        required_role:
            Minimum platform role admitted, used by the platform admin portal.
        """
        tenant = None
        if tenant_slug:
            tenant = self._repository.get_tenant_by_slug(tenant_slug)
            if tenant is None:
                return self._login_failed(TenantNotFound(), None, reason="unknown_tenant")

        normalized = email.strip().lower()
        account = self._repository.get_account_by_email(normalized)
        if account is None:
            self._credentials.dummy_verify(password)
            return self._login_failed(InvalidCredentials(), None, reason="unknown_email")

        locked = self._lockout.check(account)
        if locked is not None:
            return self._login_failed(locked, account.account_id, reason="locked")

        if not self._credentials.verify(password, account.password_hash):
            status = self._lockout.record_failure(account.account_id)
            if status.newly_locked:
                metrics.ACCOUNT_LOCKOUTS.inc()
                self._audit(
                    AuthEventType.account_locked,
                    account_id=account.account_id,
                    locked_until=status.locked_until.isoformat() if status.locked_until else None,
                )
            return self._login_failed(
                InvalidCredentials(),
                account.account_id,
                reason="bad_password",
                failed_attempts=status.failed_login_count,
            )

        if not account.active:
            return self._login_failed(AccountInactive(), account.account_id, reason="inactive")
        if required_role is not None and (
            PLATFORM_ROLE_RANK[account.platform_role] < PLATFORM_ROLE_RANK[required_role]
        ):
            return self._login_failed(InvalidCredentials(), account.account_id, reason="role")

        memberships = self._repository.list_memberships(account.account_id)
        scope_tenant_id = None
        tenant_role = None
        if tenant is not None:
            membership = _membership_in(memberships, tenant.tenant_id)
            if membership is None and account.platform_role is not PlatformRole.SUPER_ADMIN:
                return self._login_failed(InvalidCredentials(), account.account_id, reason="no_membership")
            scope_tenant_id = tenant.tenant_id
            tenant_role = membership.role if membership else None

        self._lockout.record_success(account.account_id)
        tokens = self._issue_pair(account, memberships, scope_tenant_id)
        metrics.LOGIN_ATTEMPTS.labels(outcome="SUCCESS").inc()
        self._audit(
            AuthEventType.login_succeeded,
            account_id=account.account_id,
            tenant_id=scope_tenant_id,
            must_change_password=account.must_change_password,
        )
        return LoginResult(
            tokens=tokens,
            account_id=account.account_id,
            email=account.email,
            platform_role=account.platform_role,
            must_change_password=account.must_change_password,
            tenant_id=scope_tenant_id,
            tenant_role=tenant_role,
        )

    def verify_request(self, bearer_token: str) -> Claims | AuthError:
        """Verify the raw token taken from an ``Authorization: Bearer`` header."""
        if not bearer_token:
            return TokenInvalid(message="Missing bearer token")
        return self._tokens.verify_access(bearer_token)

    def authorize(self, claims: Claims, scope: Scope) -> AuthorizationDecision:
        return authorize(claims, scope)

    def change_password(
        self, claims: Claims, current_password: str, new_password: str
    ) -> PasswordChanged | AuthError:
        """Change the caller's own password and mint an unrestricted session."""
        outcome = self._lifecycle.change_password(claims.subject, current_password, new_password)
        metrics.PASSWORD_CHANGES.labels(outcome=_outcome_code(outcome)).inc()
        if not isinstance(outcome, PasswordChanged):
            return outcome

        account = self._repository.get_account(claims.subject)
        if account is None:
            return AccountNotFound()
        scope_tenant_id = claims.tenant_id if isinstance(claims, TenantScopedClaims) else None
        memberships = self._repository.list_memberships(account.account_id)
        outcome.tokens = self._issue_pair(account, memberships, scope_tenant_id)
        self._audit(
            AuthEventType.password_changed,
            account_id=account.account_id,
            tenant_id=scope_tenant_id,
            actor=account.account_id,
        )
        return outcome

    def refresh_session(self, refresh_token: str) -> RefreshResult | AuthError:
        """Exchange a refresh token for a new access token.

        Role, memberships and the active flag are re-read from the store; the
        presented token only contributes the subject and tenant scope.
        """
        claims = self._tokens.verify_refresh(refresh_token)
        if isinstance(claims, AuthError):
            metrics.SESSION_REFRESHES.labels(outcome=claims.code).inc()
            return claims

        result = self._refresh_for(claims.subject, claims.tenant_id)
        metrics.SESSION_REFRESHES.labels(outcome=_outcome_code(result)).inc()
        return result

    def _refresh_for(self, account_id: str, tenant_id: str | None) -> RefreshResult | AuthError:
        account = self._repository.get_account(account_id)
        if account is None:
            return TokenInvalid(message="Account no longer exists")
        if not account.active:
            return AccountInactive()

        memberships = self._repository.list_memberships(account.account_id)
        if (
            tenant_id is not None
            and account.platform_role is not PlatformRole.SUPER_ADMIN
            and _membership_in(memberships, tenant_id) is None
        ):
            logger.info("refresh denied for %s: membership in %s revoked", account_id, tenant_id)
            return InsufficientRole(message="Tenant membership is no longer active")

        access = self._tokens.issue_access_token(account, memberships, tenant_id)
        self._audit(AuthEventType.session_refreshed, account_id=account.account_id, tenant_id=tenant_id)
        return RefreshResult(access_token=access.token, access_expires_in=access.expires_in)

    def provision_account(self, payload: ProvisionAccountInput) -> ProvisionedAccount | AuthError:
        """Create an account on behalf of an administrator.

        Without an explicit password a temporary one is generated and returned
        exactly once. Unless ``verified`` is set the account must change its
        password on first login.
        """
        temporary = None
        password = payload.password
        if password is None:
            temporary = password = self._credentials.generate_temporary()
        else:
            report = self._credentials.validate_strength(password)
            if not report.valid:
                return WeakPassword(violations=report.violations)

        tenant_role = payload.tenant_role
        if payload.tenant_id and tenant_role is None:
            tenant_role = TenantRole.STAFF
        account = self._repository.create_account(
            NewAccountRecord(
                email=payload.email.strip().lower(),
                password_hash=self._credentials.hash(password),
                platform_role=payload.platform_role,
                must_change_password=not payload.verified,
                tenant_id=payload.tenant_id,
                tenant_role=tenant_role if payload.tenant_id else None,
            ),
            now=self._clock(),
        )
        if account is None:
            return EmailAlreadyRegistered()

        self._audit(
            AuthEventType.account_provisioned,
            account_id=account.account_id,
            tenant_id=payload.tenant_id,
            actor=payload.actor,
            platform_role=account.platform_role.value,
            tenant_role=tenant_role.value if payload.tenant_id and tenant_role else None,
        )
        return ProvisionedAccount(
            account=account,
            temporary_password=temporary,
            tenant_id=payload.tenant_id,
            tenant_role=tenant_role if payload.tenant_id else None,
        )

    def force_password_reset(
        self, account_id: str, *, actor: str | None = None, issue_temporary: bool = True
    ) -> ForcedReset | AccountNotFound:
        outcome = self._lifecycle.force_password_reset(account_id, issue_temporary=issue_temporary)
        if isinstance(outcome, ForcedReset):
            self._audit(
                AuthEventType.password_reset_forced,
                account_id=account_id,
                actor=actor,
                temporary_issued=outcome.temporary_password is not None,
            )
        return outcome

    def request_password_reset(
        self, email: str, tenant_slug: str, message: str | None = None
    ) -> PasswordResetRequested | TenantNotFound:
        """Record a member's request for an administrator-driven reset.

        The outcome does not depend on whether ``email`` belongs to an active
        member of the tenant; only the audit entry tells the two apart.
        """
        tenant = self._repository.get_tenant_by_slug(tenant_slug)
        if tenant is None:
            return TenantNotFound()

        normalized = email.strip().lower()
        account = self._repository.get_account_by_email(normalized)
        member = None
        if account is not None and account.active:
            member = _membership_in(self._repository.list_memberships(account.account_id), tenant.tenant_id)
        account_id = account.account_id if member is not None else None

        self._audit(
            AuthEventType.password_reset_requested,
            account_id=account_id,
            tenant_id=tenant.tenant_id,
            request_email=normalized,
            has_matching_account=account_id is not None,
            message=message or None,
        )
        logger.info("password reset requested for tenant %s", tenant.slug)
        return PasswordResetRequested(tenant_id=tenant.tenant_id, tenant_slug=tenant.slug)

    def deactivate_account(self, account_id: str, *, actor: str | None = None) -> Account | AccountNotFound:
        if not self._repository.set_account_active(account_id, False):
            return AccountNotFound()
        account = self._repository.get_account(account_id)
        if account is None:
            return AccountNotFound()
        self._audit(AuthEventType.account_deactivated, account_id=account_id, actor=actor)
        return account

    def grant_membership(
        self, account_id: str, tenant_id: str, role: TenantRole, *, actor: str | None = None
    ) -> TenantMembership | AccountNotFound:
        if self._repository.get_account(account_id) is None:
            return AccountNotFound()
        membership = self._repository.upsert_membership(account_id, tenant_id, role, now=self._clock())
        self._audit(
            AuthEventType.membership_granted,
            account_id=account_id,
            tenant_id=tenant_id,
            actor=actor,
            role=role.value,
        )
        return membership

    def revoke_membership(self, account_id: str, tenant_id: str, *, actor: str | None = None) -> bool:
        revoked = self._repository.deactivate_membership(account_id, tenant_id)
        if revoked:
            self._audit(AuthEventType.membership_revoked, account_id=account_id, tenant_id=tenant_id, actor=actor)
        return revoked

    def _issue_pair(
        self, account: Account, memberships: Iterable[TenantMembership], scope_tenant_id: str | None
    ) -> TokenPair:
        access = self._tokens.issue_access_token(account, memberships, scope_tenant_id)
        refresh = self._tokens.issue_refresh_token(account, scope_tenant_id)
        return TokenPair(
            access_token=access.token,
            access_expires_in=access.expires_in,
            refresh_token=refresh.token,
            refresh_expires_in=refresh.expires_in,
        )

    def _login_failed(self, error: AuthError, account_id: str | None, **metadata: Any) -> AuthError:
        metrics.LOGIN_ATTEMPTS.labels(outcome=error.code).inc()
        self._audit(AuthEventType.login_failed, account_id=account_id, code=error.code, **metadata)
        return error

    def _audit(
        self,
        event_type: AuthEventType,
        *,
        account_id: str | None = None,
        tenant_id: str | None = None,
        actor: str | None = None,
        **metadata: Any,
    ) -> None:
        self._repository.write_audit_event(
            AuthAuditEvent(
                event_type=event_type,
                account_id=account_id,
                tenant_id=tenant_id,
                actor=actor if actor is not None else account_id,
                metadata=metadata,
                occurred_at=self._clock(),
            )
        )


def _membership_in(memberships: Iterable[TenantMembership], tenant_id: str) -> TenantMembership | None:
    for membership in memberships:
        if membership.tenant_id == tenant_id and membership.active:
            return membership
    return None


def _outcome_code(outcome: object) -> str:
    return outcome.code if isinstance(outcome, AuthError) else "SUCCESS"
