"""Forced password change lifecycle: ``MustChange -> Normal`` and administrative reset."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Protocol, Union

from ..clock import Clock, utc_now
from ..security.passwords import CredentialManager
from .account import Account
from .results import (
    AccountInactive,
    AccountNotFound,
    ForcedReset,
    InvalidCurrentPassword,
    PasswordChanged,
    PasswordUnchanged,
    StaleAccountState,
    WeakPassword,
)

logger = logging.getLogger(__name__)

ChangePasswordOutcome = Union[
    PasswordChanged,
    AccountNotFound,
    AccountInactive,
    InvalidCurrentPassword,
    WeakPassword,
    PasswordUnchanged,
    StaleAccountState,
]


class PasswordStore(Protocol):
    def get_account(self, account_id: str) -> Account | None: ...

    def replace_password_hash(
        self,
        account_id: str,
        *,
        expected_hash: str | None,
        new_hash: str,
        must_change_password: bool,
        now: datetime,
        clear_lockout: bool = False,
    ) -> bool: ...

    def set_must_change_password(self, account_id: str, *, now: datetime, clear_lockout: bool = False) -> bool: ...


class PasswordLifecycle:
    """Gates restricted sessions and applies password replacements atomically."""

    def __init__(self, store: PasswordStore, credentials: CredentialManager, clock: Clock = utc_now) -> None:
        self._store = store
        self._credentials = credentials
        self._clock = clock

    @staticmethod
    def requires_change(account: Account) -> bool:
        return account.must_change_password

    def change_password(self, account_id: str, current_password: str, new_password: str) -> ChangePasswordOutcome:
        """Replace the password after verifying the current one.

        Checks run in a fixed order and the first failure is returned:
        current password, strength of the new one, then that it differs.
        The write is a compare-and-set against the hash that was verified, so
        a concurrent change is reported instead of silently overwritten.
        """
        account = self._store.get_account(account_id)
        if account is None:
            return AccountNotFound()
        if not account.active:
            return AccountInactive()
        if not self._credentials.verify(current_password, account.password_hash):
            return InvalidCurrentPassword()

        report = self._credentials.validate_strength(new_password)
        if not report.valid:
            return WeakPassword(violations=report.violations)
        if new_password == current_password:
            return PasswordUnchanged()

        new_hash = self._credentials.hash(new_password)
        replaced = self._store.replace_password_hash(
            account_id,
            expected_hash=account.password_hash,
            new_hash=new_hash,
            must_change_password=False,
            now=self._clock(),
        )
        if not replaced:
            logger.warning("password change for account %s lost a concurrent update", account_id)
            return StaleAccountState()
        logger.info("password changed for account %s", account_id)
        return PasswordChanged(account_id=account_id)

    def force_password_reset(self, account_id: str, *, issue_temporary: bool = True) -> ForcedReset | AccountNotFound:
        """Put the account back into ``MustChange``, optionally with a new temporary password.

        Any active lockout is cleared so the account holder can sign in with
        the credentials the administrator hands out.
        """
        now = self._clock()
        if issue_temporary:
            temporary = self._credentials.generate_temporary()
            updated = self._store.replace_password_hash(
                account_id,
                expected_hash=None,
                new_hash=self._credentials.hash(temporary),
                must_change_password=True,
                now=now,
                clear_lockout=True,
            )
        else:
            temporary = None
            updated = self._store.set_must_change_password(account_id, now=now, clear_lockout=True)
        if not updated:
            return AccountNotFound()
        logger.info("forced password reset for account %s", account_id)
        return ForcedReset(account_id=account_id, temporary_password=temporary)
