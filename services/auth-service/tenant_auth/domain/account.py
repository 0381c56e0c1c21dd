from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class PlatformRole(str, Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    USER = "USER"


class TenantRole(str, Enum):
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    STAFF = "STAFF"


PLATFORM_ROLE_RANK: dict[PlatformRole, int] = {
    PlatformRole.SUPER_ADMIN: 2,
    PlatformRole.ADMIN: 1,
    PlatformRole.USER: 0,
}

TENANT_ROLE_RANK: dict[TenantRole, int] = {
    TenantRole.ADMIN: 2,
    TenantRole.MANAGER: 1,
    TenantRole.STAFF: 0,
}


@dataclass(slots=True)
class Account:
    """Aggregate root for a platform identity and its credential state."""

    account_id: str
    email: str
    password_hash: str
    platform_role: PlatformRole = PlatformRole.USER
    active: bool = True
    must_change_password: bool = True
    failed_login_count: int = 0
    locked_until: datetime | None = None
    last_login_at: datetime | None = None
    password_changed_at: datetime | None = None
    created_at: datetime | None = None


@dataclass(slots=True)
class TenantMembership:
    """Binds one account to one tenant with a tenant-scoped role."""

    membership_id: str
    account_id: str
    tenant_id: str
    role: TenantRole
    active: bool = True


@dataclass(slots=True)
class TenantRef:
    """The slice of a tenant record needed to resolve a portal login."""

    tenant_id: str
    slug: str
    active: bool = True
