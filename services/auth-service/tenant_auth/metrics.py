"""Prometheus counters for authentication outcomes."""

from __future__ import annotations

from prometheus_client import Counter

LOGIN_ATTEMPTS = Counter(
    "auth_login_attempts_total",
    "Login attempts by outcome code",
    ["outcome"],
)

ACCOUNT_LOCKOUTS = Counter(
    "auth_account_lockouts_total",
    "Accounts transitioned into the locked state",
)

SESSION_REFRESHES = Counter(
    "auth_session_refreshes_total",
    "Refresh token exchanges by outcome code",
    ["outcome"],
)

PASSWORD_CHANGES = Counter(
    "auth_password_changes_total",
    "Password change requests by outcome code",
    ["outcome"],
)
