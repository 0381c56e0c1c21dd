"""Failed-login bookkeeping and time-boxed account lockout."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from ..clock import Clock, utc_now
from ..domain.account import Account
from ..domain.contracts import LoginCounters
from ..domain.results import AccountLocked

logger = logging.getLogger(__name__)


class LockoutStore(Protocol):
    def get_account(self, account_id: str) -> Account | None: ...

    def record_failed_login(
        self, account_id: str, *, now: datetime, threshold: int, lock_until: datetime
    ) -> LoginCounters | None: ...

    def clear_expired_lockout(
        self, account_id: str, *, expected_locked_until: datetime, now: datetime
    ) -> bool: ...

    def record_successful_login(self, account_id: str, *, now: datetime) -> None: ...


@dataclass(slots=True)
class LockoutStatus:
    failed_login_count: int
    locked_until: datetime | None = None
    # true only for the attempt whose failure caused the lock
    newly_locked: bool = False

    @property
    def locked(self) -> bool:
        return self.locked_until is not None


class LockoutTracker:
    """Per-account ``Normal`` / ``Locked(until)`` state machine.

    State lives on the account row; every transition is delegated to a single
    atomic statement in the store so concurrent failures are never
    under-counted, even across service instances.
    """

    def __init__(
        self,
        store: LockoutStore,
        *,
        threshold: int = 5,
        lockout_seconds: int = 900,
        clock: Clock = utc_now,
    ) -> None:
        if threshold < 1:
            raise ValueError("lockout threshold must be at least 1")
        self._store = store
        self._threshold = threshold
        self._duration = timedelta(seconds=lockout_seconds)
        self._clock = clock

    @property
    def threshold(self) -> int:
        return self._threshold

    def check(self, account: Account) -> AccountLocked | None:
        """Reject while locked; reset the counter once the window has elapsed."""
        if account.locked_until is None:
            return None
        now = self._clock()
        if now < account.locked_until:
            return AccountLocked(until=account.locked_until)
        if self._store.clear_expired_lockout(
            account.account_id, expected_locked_until=account.locked_until, now=now
        ):
            logger.info("lockout window elapsed for account %s", account.account_id)
        account.failed_login_count = 0
        account.locked_until = None
        return None

    def record_failure(self, account_id: str) -> LockoutStatus:
        """Count one failed attempt, locking the account at the threshold."""
        now = self._clock()
        counters = self._store.record_failed_login(
            account_id,
            now=now,
            threshold=self._threshold,
            lock_until=now + self._duration,
        )
        if counters is None:
            # a concurrent attempt locked the row first
            current = self._store.get_account(account_id)
            locked_until = current.locked_until if current else None
            count = current.failed_login_count if current else 0
            return LockoutStatus(failed_login_count=count, locked_until=locked_until)
        if counters.locked_until is not None:
            logger.warning(
                "account %s locked until %s after %d failed attempts",
                account_id,
                counters.locked_until.isoformat(),
                counters.failed_login_count,
            )
        return LockoutStatus(
            failed_login_count=counters.failed_login_count,
            locked_until=counters.locked_until,
            newly_locked=counters.locked_until is not None,
        )

    def record_success(self, account_id: str) -> None:
        self._store.record_successful_login(account_id, now=self._clock())
