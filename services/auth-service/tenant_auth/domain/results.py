"""Typed outcomes returned by the auth core.

Failures are values, not exceptions: every operation returns either its
success type or an ``AuthError`` subclass, and the HTTP layer translates the
error into a transport response in one place.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import ClassVar

from .account import Account, PlatformRole, TenantRole


@dataclass(frozen=True, slots=True)
class AuthError:
    """Base for every recoverable authentication or authorization outcome."""

    code: ClassVar[str] = "AUTH_ERROR"
    message: str = "authentication failed"


@dataclass(frozen=True, slots=True)
class InvalidCredentials(AuthError):
    code: ClassVar[str] = "INVALID_CREDENTIALS"
    message: str = "Invalid email or password"


@dataclass(frozen=True, slots=True)
class AccountLocked(AuthError):
    code: ClassVar[str] = "ACCOUNT_LOCKED"
    message: str = "Account is locked due to multiple failed login attempts"
    until: datetime | None = None

    def retry_after_seconds(self, now: datetime) -> int:
        """Seconds the caller should wait before trying again (at least 1)."""
        if self.until is None:
            return 1
        return max(1, int((self.until - now).total_seconds() + 0.999))


@dataclass(frozen=True, slots=True)
class AccountInactive(AuthError):
    code: ClassVar[str] = "ACCOUNT_INACTIVE"
    message: str = "Account is deactivated"


@dataclass(frozen=True, slots=True)
class AccountNotFound(AuthError):
    code: ClassVar[str] = "ACCOUNT_NOT_FOUND"
    message: str = "Account not found"


@dataclass(frozen=True, slots=True)
class TenantNotFound(AuthError):
    code: ClassVar[str] = "TENANT_NOT_FOUND"
    message: str = "Restaurant not found or inactive"


@dataclass(frozen=True, slots=True)
class TokenInvalid(AuthError):
    code: ClassVar[str] = "TOKEN_INVALID"
    message: str = "Invalid token"


@dataclass(frozen=True, slots=True)
class TokenExpired(AuthError):
    code: ClassVar[str] = "TOKEN_EXPIRED"
    message: str = "Token has expired"


@dataclass(frozen=True, slots=True)
class InsufficientRole(AuthError):
    code: ClassVar[str] = "INSUFFICIENT_ROLE"
    message: str = "Access denied"


@dataclass(frozen=True, slots=True)
class MustChangePassword(AuthError):
    code: ClassVar[str] = "MUST_CHANGE_PASSWORD"
    message: str = "Password change required before continuing"


@dataclass(frozen=True, slots=True)
class WeakPassword(AuthError):
    code: ClassVar[str] = "WEAK_PASSWORD"
    message: str = "Password does not meet the strength requirements"
    violations: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class InvalidCurrentPassword(AuthError):
    code: ClassVar[str] = "INVALID_CURRENT_PASSWORD"
    message: str = "Current password is incorrect"


@dataclass(frozen=True, slots=True)
class PasswordUnchanged(AuthError):
    code: ClassVar[str] = "PASSWORD_UNCHANGED"
    message: str = "New password must be different from current password"


@dataclass(frozen=True, slots=True)
class EmailAlreadyRegistered(AuthError):
    code: ClassVar[str] = "EMAIL_ALREADY_REGISTERED"
    message: str = "User with this email already exists"


@dataclass(frozen=True, slots=True)
class StaleAccountState(AuthError):
    code: ClassVar[str] = "STALE_ACCOUNT_STATE"
    message: str = "Account was modified concurrently, retry the operation"


@dataclass(slots=True)
class TokenPair:
    """Encapsulates the access/refresh token pair returned to API consumers."""

    access_token: str
    access_expires_in: int
    refresh_token: str
    refresh_expires_in: int


@dataclass(slots=True)
class LoginResult:
    """Successful authentication.

    ``must_change_password`` is a mode flag: the tokens are valid but the
    session only authorizes the password change until it completes.
    """

    tokens: TokenPair
    account_id: str
    email: str
    platform_role: PlatformRole
    must_change_password: bool
    tenant_id: str | None = None
    tenant_role: TenantRole | None = None


@dataclass(slots=True)
class RefreshResult:
    access_token: str
    access_expires_in: int


@dataclass(slots=True)
class PasswordChanged:
    """Password replaced; carries a fresh, unrestricted token pair."""

    account_id: str
    tokens: TokenPair | None = None


@dataclass(slots=True)
class ForcedReset:
    account_id: str
    temporary_password: str | None = None


@dataclass(slots=True)
class PasswordResetRequested:
    """Acknowledgement of a self-service reset request.

    Identical whether or not the email belongs to a member of the tenant.
    """

    tenant_id: str
    tenant_slug: str


@dataclass(slots=True)
class ProvisionedAccount:
    account: Account
    temporary_password: str | None
    tenant_id: str | None = None
    tenant_role: TenantRole | None = None


@dataclass(frozen=True, slots=True)
class StrengthReport:
    valid: bool
    violations: tuple[str, ...] = field(default_factory=tuple)
