from __future__ import annotations

import dataclasses
import uuid
from datetime import datetime, timedelta, timezone
from threading import RLock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from tenant_auth.api import routes
from tenant_auth.config import Settings
from tenant_auth.domain.account import Account, PlatformRole, TenantMembership, TenantRef, TenantRole
from tenant_auth.domain.contracts import LoginCounters, NewAccountRecord, ProvisionAccountInput
from tenant_auth.domain.service import AuthService

SIGNING_SECRET = "test-signing-secret-with-plenty-of-entropy-0123456789"
ADMIN_PASSWORD = "Adm1n!Password"


class FrozenClock:
    """Controllable clock handed to every component under test."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now += timedelta(**delta)


class FakeRepository:
    """In-memory repository mimicking the guarded updates of the Postgres one."""

    def __init__(self) -> None:
        self._lock = RLock()
        self._accounts: dict[str, Account] = {}
        self._memberships: dict[tuple[str, str], TenantMembership] = {}
        self._tenants: list[tuple[TenantRef, str | None]] = []
        self.audit_log: list = []

    def add_tenant(self, slug: str, *, subdomain: str | None = None, active: bool = True) -> TenantRef:
        tenant = TenantRef(tenant_id=str(uuid.uuid4()), slug=slug, active=active)
        self._tenants.append((tenant, subdomain))
        return tenant

    def get_account(self, account_id: str) -> Account | None:
        with self._lock:
            account = self._accounts.get(account_id)
            return dataclasses.replace(account) if account else None

    def get_account_by_email(self, email: str) -> Account | None:
        with self._lock:
            for account in self._accounts.values():
                if account.email == email.lower():
                    return dataclasses.replace(account)
        return None

    def list_memberships(self, account_id: str, *, include_inactive: bool = False) -> list[TenantMembership]:
        with self._lock:
            return [
                dataclasses.replace(membership)
                for (owner, _), membership in self._memberships.items()
                if owner == account_id and (include_inactive or membership.active)
            ]

    def get_tenant_by_slug(self, slug: str) -> TenantRef | None:
        for tenant, subdomain in self._tenants:
            if tenant.active and slug in (tenant.slug, subdomain):
                return tenant
        return None

    def create_account(self, record: NewAccountRecord, *, now: datetime) -> Account | None:
        with self._lock:
            if any(account.email == record.email.lower() for account in self._accounts.values()):
                return None
            account = Account(
                account_id=str(uuid.uuid4()),
                email=record.email.lower(),
                password_hash=record.password_hash,
                platform_role=record.platform_role,
                must_change_password=record.must_change_password,
                created_at=now,
            )
            self._accounts[account.account_id] = account
            if record.tenant_id and record.tenant_role:
                self.upsert_membership(account.account_id, record.tenant_id, record.tenant_role, now=now)
            return dataclasses.replace(account)

    def upsert_membership(
        self, account_id: str, tenant_id: str, role: TenantRole, *, now: datetime
    ) -> TenantMembership:
        with self._lock:
            membership = self._memberships.get((account_id, tenant_id))
            if membership is None:
                membership = TenantMembership(
                    membership_id=str(uuid.uuid4()),
                    account_id=account_id,
                    tenant_id=tenant_id,
                    role=role,
                )
                self._memberships[(account_id, tenant_id)] = membership
            membership.role = role
            membership.active = True
            return dataclasses.replace(membership)

    def deactivate_membership(self, account_id: str, tenant_id: str) -> bool:
        with self._lock:
            membership = self._memberships.get((account_id, tenant_id))
            if membership is None or not membership.active:
                return False
            membership.active = False
            return True

    def set_account_active(self, account_id: str, active: bool) -> bool:
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None:
                return False
            account.active = active
            return True

    def record_failed_login(
        self, account_id: str, *, now: datetime, threshold: int, lock_until: datetime
    ) -> LoginCounters | None:
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None:
                return None
            if account.locked_until is not None and account.locked_until > now:
                return None
            count = 1 if account.locked_until is not None else account.failed_login_count + 1
            account.failed_login_count = count
            account.locked_until = lock_until if count >= threshold else None
            return LoginCounters(failed_login_count=count, locked_until=account.locked_until)

    def clear_expired_lockout(self, account_id: str, *, expected_locked_until: datetime, now: datetime) -> bool:
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None or account.locked_until != expected_locked_until or account.locked_until > now:
                return False
            account.failed_login_count = 0
            account.locked_until = None
            return True

    def record_successful_login(self, account_id: str, *, now: datetime) -> None:
        with self._lock:
            account = self._accounts[account_id]
            account.failed_login_count = 0
            account.locked_until = None
            account.last_login_at = now

    def replace_password_hash(
        self,
        account_id: str,
        *,
        expected_hash: str | None,
        new_hash: str,
        must_change_password: bool,
        now: datetime,
        clear_lockout: bool = False,
    ) -> bool:
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None:
                return False
            if expected_hash is not None and account.password_hash != expected_hash:
                return False
            account.password_hash = new_hash
            account.must_change_password = must_change_password
            account.password_changed_at = now
            if clear_lockout:
                account.failed_login_count = 0
                account.locked_until = None
            return True

    def set_must_change_password(self, account_id: str, *, now: datetime, clear_lockout: bool = False) -> bool:
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None:
                return False
            account.must_change_password = True
            if clear_lockout:
                account.failed_login_count = 0
                account.locked_until = None
            return True

    def write_audit_event(self, event) -> None:
        with self._lock:
            self.audit_log.append(event)

    def event_types(self) -> list[str]:
        return [event.event_type.value for event in self.audit_log]


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        jwt_secret=SIGNING_SECRET,
        jwt_key_id="test-key",
        jwt_previous_keys="",
        jwt_issuer="tenant-auth-tests",
        bcrypt_rounds=4,
        lockout_threshold=5,
        lockout_duration_seconds=900,
    )


@pytest.fixture
def repository() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def service(repository: FakeRepository, settings: Settings, clock: FrozenClock) -> AuthService:
    return AuthService.from_settings(repository, settings, clock=clock)


@pytest.fixture
def super_admin(service: AuthService) -> Account:
    result = service.provision_account(
        ProvisionAccountInput(
            email="root@platform.example.com",
            platform_role=PlatformRole.SUPER_ADMIN,
            password=ADMIN_PASSWORD,
            verified=True,
        )
    )
    return result.account


@pytest.fixture
def api_client(service: AuthService):
    """Provide a FastAPI test client with isolated state."""
    app = FastAPI()
    app.include_router(routes.router)
    app.state.auth_service = service

    original_limiter = routes.rate_limiter
    routes.rate_limiter = routes.SlidingWindowRateLimiter(max_requests=10, window_seconds=60)

    with TestClient(app) as client:
        yield client, service

    routes.rate_limiter = original_limiter
