"""Account-related DTOs shared across services."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from pydantic import BaseModel, ConfigDict, EmailStr, Field


class PlatformRoleName(str, Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    USER = "USER"


class TenantRoleName(str, Enum):
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    STAFF = "STAFF"


class TenantMembershipSummary(BaseModel):
    tenant_id: str
    role: TenantRoleName

    model_config = ConfigDict(use_enum_values=True)


class AccountSummary(BaseModel):
    """Public projection of an account; never carries credential material."""

    account_id: str
    email: EmailStr
    platform_role: PlatformRoleName
    active: bool = True
    must_change_password: bool = False
    last_login_at: datetime | None = None
    created_at: datetime | None = None
    memberships: list[TenantMembershipSummary] = Field(default_factory=list)

    model_config = ConfigDict(use_enum_values=True)
