"""Database repository for accounts, memberships and the auth audit trail."""

from __future__ import annotations

import uuid
from datetime import datetime

from psycopg.rows import tuple_row
from psycopg.types.json import Json
from psycopg_pool import ConnectionPool

from platform_schemas import AuthAuditEvent

from .domain.account import Account, PlatformRole, TenantMembership, TenantRef, TenantRole
from .domain.contracts import LoginCounters, NewAccountRecord

_ACCOUNT_COLUMNS = """
    account_id, email, password_hash, platform_role, active, must_change_password,
    failed_login_count, locked_until, last_login_at, password_changed_at, created_at
"""


class AccountRepository:
    """Postgres-backed account persistence.

    Every state transition on credentials or lockout counters is a single
    guarded ``UPDATE``, so concurrent requests against the same account are
    serialised by the row lock instead of an in-process mutex.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        """Store the connection pool used for all database interactions."""
        self._pool = pool

    def get_account(self, account_id: str) -> Account | None:
        """Fetch an account by identifier or return ``None``."""
        return self._fetch_account("account_id = %s", account_id)

    def get_account_by_email(self, email: str) -> Account | None:
        """Fetch an account by its (lower-cased) email address."""
        return self._fetch_account("email = %s", email.lower())

    def _fetch_account(self, where: str, value: str) -> Account | None:
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE {where}", (value,))
                row = cur.fetchone()
        return self._map_account(row) if row else None

    def list_memberships(self, account_id: str, *, include_inactive: bool = False) -> list[TenantMembership]:
        """Return the tenant memberships of an account."""
        query = """
            SELECT membership_id, account_id, tenant_id, role, active
            FROM tenant_memberships
            WHERE account_id = %s
        """
        if not include_inactive:
            query += " AND active"
        query += " ORDER BY created_at"
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(query, (account_id,))
                rows = cur.fetchall()
        return [self._map_membership(row) for row in rows]

    def get_tenant_by_slug(self, slug: str) -> TenantRef | None:
        """Resolve an active tenant by slug or subdomain."""
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    """
                    SELECT tenant_id, slug, is_active
                    FROM tenants
                    WHERE (slug = %s OR subdomain = %s) AND is_active
                    LIMIT 1
                    """,
                    (slug, slug),
                )
                row = cur.fetchone()
        if not row:
            return None
        return TenantRef(tenant_id=str(row[0]), slug=row[1], active=row[2])

    def create_account(self, record: NewAccountRecord, *, now: datetime) -> Account | None:
        """Insert an account (and optional membership) atomically.

        Returns ``None`` when the email is already registered.
        """
        account_id = str(uuid.uuid4())
        with self._pool.connection() as conn:
            with conn.transaction():
                with conn.cursor(row_factory=tuple_row) as cur:
                    cur.execute(
                        f"""
                        INSERT INTO accounts (
                            account_id, email, password_hash, platform_role, active,
                            must_change_password, failed_login_count, created_at, updated_at
                        )
                        VALUES (%s, %s, %s, %s, TRUE, %s, 0, %s, %s)
                        ON CONFLICT (email) DO NOTHING
                        RETURNING {_ACCOUNT_COLUMNS}
                        """,
                        (
                            account_id,
                            record.email.lower(),
                            record.password_hash,
                            record.platform_role.value,
                            record.must_change_password,
                            now,
                            now,
                        ),
                    )
                    row = cur.fetchone()
                    if row is None:
                        return None
                    if record.tenant_id and record.tenant_role:
                        self._upsert_membership(cur, account_id, record.tenant_id, record.tenant_role, now)
        return self._map_account(row)

    def upsert_membership(
        self, account_id: str, tenant_id: str, role: TenantRole, *, now: datetime
    ) -> TenantMembership:
        """Create or reactivate the membership, setting its role."""
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                row = self._upsert_membership(cur, account_id, tenant_id, role, now)
            conn.commit()
        return self._map_membership(row)

    def _upsert_membership(self, cur, account_id: str, tenant_id: str, role: TenantRole, now: datetime) -> tuple:
        cur.execute(
            """
            INSERT INTO tenant_memberships (membership_id, account_id, tenant_id, role, active, created_at, updated_at)
            VALUES (%s, %s, %s, %s, TRUE, %s, %s)
            ON CONFLICT (account_id, tenant_id)
            DO UPDATE SET role = EXCLUDED.role, active = TRUE, updated_at = EXCLUDED.updated_at
            RETURNING membership_id, account_id, tenant_id, role, active
            """,
            (str(uuid.uuid4()), account_id, tenant_id, role.value, now, now),
        )
        return cur.fetchone()

    def deactivate_membership(self, account_id: str, tenant_id: str) -> bool:
        """Revoke access to a tenant without deleting the membership row."""
        return self._execute_update(
            """
            UPDATE tenant_memberships
            SET active = FALSE, updated_at = NOW()
            WHERE account_id = %s AND tenant_id = %s AND active
            """,
            (account_id, tenant_id),
        )

    def set_account_active(self, account_id: str, active: bool) -> bool:
        return self._execute_update(
            "UPDATE accounts SET active = %s, updated_at = NOW() WHERE account_id = %s",
            (active, account_id),
        )

    def record_failed_login(
        self,
        account_id: str,
        *,
        now: datetime,
        threshold: int,
        lock_until: datetime,
    ) -> LoginCounters | None:
        """Atomically count a failed attempt and lock once ``threshold`` is reached.

        A lock whose window has elapsed restarts the count at one. Rows that
        are still locked are left untouched and ``None`` is returned.
        """
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    """
                    UPDATE accounts
                    SET failed_login_count = CASE
                            WHEN locked_until IS NOT NULL THEN 1
                            ELSE failed_login_count + 1
                        END,
                        locked_until = CASE
                            WHEN (CASE WHEN locked_until IS NOT NULL THEN 1 ELSE failed_login_count + 1 END)
                                 >= %(threshold)s
                            THEN %(lock_until)s::timestamptz
                            ELSE NULL
                        END,
                        updated_at = %(now)s
                    WHERE account_id = %(account_id)s
                      AND (locked_until IS NULL OR locked_until <= %(now)s)
                    RETURNING failed_login_count, locked_until
                    """,
                    {
                        "account_id": account_id,
                        "threshold": threshold,
                        "lock_until": lock_until,
                        "now": now,
                    },
                )
                row = cur.fetchone()
            conn.commit()
        if not row:
            return None
        return LoginCounters(failed_login_count=row[0], locked_until=row[1])

    def clear_expired_lockout(self, account_id: str, *, expected_locked_until: datetime, now: datetime) -> bool:
        """Reset the counter of a lock whose window elapsed, if no one else did."""
        return self._execute_update(
            """
            UPDATE accounts
            SET failed_login_count = 0, locked_until = NULL, updated_at = %s
            WHERE account_id = %s AND locked_until = %s AND locked_until <= %s
            """,
            (now, account_id, expected_locked_until, now),
        )

    def record_successful_login(self, account_id: str, *, now: datetime) -> None:
        self._execute_update(
            """
            UPDATE accounts
            SET failed_login_count = 0, locked_until = NULL, last_login_at = %s, updated_at = %s
            WHERE account_id = %s
            """,
            (now, now, account_id),
        )

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
        """Compare-and-set the password hash.

        With ``expected_hash`` the update only applies if the stored hash is
        still the one the caller verified; ``None`` replaces unconditionally
        (administrative reset).
        """
        assignments = "password_hash = %s, must_change_password = %s, password_changed_at = %s, updated_at = %s"
        params: list = [new_hash, must_change_password, now, now]
        if clear_lockout:
            assignments += ", failed_login_count = 0, locked_until = NULL"
        query = f"UPDATE accounts SET {assignments} WHERE account_id = %s"
        params.append(account_id)
        if expected_hash is not None:
            query += " AND password_hash = %s"
            params.append(expected_hash)
        return self._execute_update(query, tuple(params))

    def set_must_change_password(self, account_id: str, *, now: datetime, clear_lockout: bool = False) -> bool:
        query = "UPDATE accounts SET must_change_password = TRUE, updated_at = %s"
        if clear_lockout:
            query += ", failed_login_count = 0, locked_until = NULL"
        query += " WHERE account_id = %s"
        return self._execute_update(query, (now, account_id))

    def write_audit_event(self, event: AuthAuditEvent) -> None:
        """Record an audit trail entry capturing identity workflow activity."""
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO auth_audit_log (account_id, tenant_id, event_type, actor, metadata, created_at)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    """,
                    (
                        event.account_id,
                        event.tenant_id,
                        event.event_type.value,
                        event.actor,
                        Json(event.metadata),
                        event.occurred_at,
                    ),
                )
                conn.commit()

    def _execute_update(self, query: str, params: tuple) -> bool:
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                updated = cur.rowcount > 0
            conn.commit()
        return updated

    def _map_account(self, row: tuple) -> Account:
        """Convert a raw database tuple into the domain ``Account`` dataclass."""
        return Account(
            account_id=str(row[0]),
            email=row[1],
            password_hash=row[2],
            platform_role=PlatformRole(row[3]),
            active=row[4],
            must_change_password=row[5],
            failed_login_count=row[6],
            locked_until=row[7],
            last_login_at=row[8],
            password_changed_at=row[9],
            created_at=row[10],
        )

    def _map_membership(self, row: tuple) -> TenantMembership:
        return TenantMembership(
            membership_id=str(row[0]),
            account_id=str(row[1]),
            tenant_id=str(row[2]),
            role=TenantRole(row[3]),
            active=row[4],
        )
