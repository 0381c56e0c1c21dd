"""Shared schema exports."""

from .account import AccountSummary, PlatformRoleName, TenantMembershipSummary, TenantRoleName
from .audit import AuthAuditEvent, AuthEventType

__all__ = [
    "AccountSummary",
    "AuthAuditEvent",
    "AuthEventType",
    "PlatformRoleName",
    "TenantMembershipSummary",
    "TenantRoleName",
]
