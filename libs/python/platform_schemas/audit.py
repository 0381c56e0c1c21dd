"""Audit trail events emitted by the auth service."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class AuthEventType(str, Enum):
    login_succeeded = "auth.login.succeeded"
    login_failed = "auth.login.failed"
    account_locked = "auth.account.locked"
    password_changed = "auth.password.changed"
    password_reset_forced = "auth.password.reset_forced"
    password_reset_requested = "auth.password.reset_requested"
    session_refreshed = "auth.session.refreshed"
    account_provisioned = "account.provisioned"
    account_deactivated = "account.deactivated"
    membership_granted = "membership.granted"
    membership_revoked = "membership.revoked"


class AuthAuditEvent(BaseModel):
    event_type: AuthEventType
    account_id: str | None = None
    tenant_id: str | None = None
    actor: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
