"""Domain-level request contracts shared by multiple layers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from .account import PlatformRole, TenantRole


@dataclass(slots=True)
class ProvisionAccountInput:
    """Validated inputs for an administrator creating an account.

    ``password`` is optional; when omitted a temporary password is generated.
    ``verified`` accounts skip the forced password change on first login.
    """

    email: str
    platform_role: PlatformRole = PlatformRole.USER
    tenant_id: str | None = None
    tenant_role: TenantRole | None = None
    password: str | None = None
    verified: bool = False
    actor: str | None = None


@dataclass(slots=True)
class NewAccountRecord:
    """Row values handed to the repository when inserting an account."""

    email: str
    password_hash: str
    platform_role: PlatformRole
    must_change_password: bool
    tenant_id: str | None = None
    tenant_role: TenantRole | None = None


@dataclass(slots=True)
class LoginCounters:
    """Counter state returned by the atomic failed-login update."""

    failed_login_count: int
    locked_until: datetime | None
