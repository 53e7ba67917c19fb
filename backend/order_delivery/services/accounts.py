"""Permanent-account store and the phone-keyed identity policy.

`AccountStore` is the narrow contract the finalizer writes through.
`PhoneAccountPolicy` holds the identity rules for phone numbers and
passwords. Repeated failed logins lock the account for a while.
"""

import logging
from datetime import timedelta
from typing import Any, Iterable

from sqlalchemy.exc import IntegrityError

from order_delivery.auth.password import hash_password, verify_password
from order_delivery.config import settings
from order_delivery.middleware.exceptions import (
    AccountLocked,
    InvalidCredentials,
    PhoneAlreadyRegistered,
    ValidationFailed,
)
from order_delivery.models.account import Account
from order_delivery.models.mixins import utcnow
from order_delivery.schemas.validators import validate_phone
from order_delivery.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)


class DuplicateAccountError(Exception):
    def __init__(self, phone_number: str):
        self.phone_number = phone_number
        super().__init__(f"Account already exists for {phone_number}")


def is_unique_violation(exc: IntegrityError) -> bool:
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate == "23505":
        return True
    return "unique" in str(orig).lower()


class AccountStore:
    def __init__(self, uow: UnitOfWork):
        self._uow = uow

    async def find_by_phone(
        self, phone_number: str, includes: Iterable[Any] = ()
    ) -> Account | None:
        return await self._uow.repository(Account).first(
            Account.phone_number == phone_number, includes=includes
        )

    async def get(self, account_id: str) -> Account | None:
        return await self._uow.repository(Account).get_by_id(account_id)

    async def create(self, account: Account) -> str:
        """Insert and flush so the id is assigned; commit is the caller's."""
        await self._uow.repository(Account).add(account)
        try:
            await self._uow.save_changes()
        except IntegrityError as exc:
            if is_unique_violation(exc):
                raise DuplicateAccountError(account.phone_number) from exc
            raise
        return account.id


class PhoneAccountPolicy:
    def __init__(
        self,
        uow: UnitOfWork,
        max_failed_logins: int = settings.max_failed_logins,
        lockout_minutes: int = settings.lockout_minutes,
    ):
        self._uow = uow
        self._store = AccountStore(uow)
        self._max_failed_logins = max_failed_logins
        self._lockout = timedelta(minutes=lockout_minutes)

    @staticmethod
    def normalize_phone(phone_number: str) -> str:
        try:
            return validate_phone(phone_number)
        except ValueError as exc:
            raise ValidationFailed(str(exc), details={"field": "phone_number"}) from exc

    async def ensure_phone_available(self, phone_number: str) -> None:
        if await self._store.find_by_phone(phone_number) is not None:
            raise PhoneAlreadyRegistered(phone_number)

    def replace_password(self, account: Account, new_password: str) -> None:
        """Set a new password and clear any lockout. Caller commits."""
        account.hashed_password = hash_password(new_password)
        account.failed_login_attempts = 0
        account.locked_until = None
        self._uow.repository(Account).update(account)

    async def authenticate(self, phone_number: str, password: str) -> Account:
        """Password login. Failed attempts are persisted even though the call raises."""
        phone_number = self.normalize_phone(phone_number)

        async def _attempt():
            account = await self._store.find_by_phone(phone_number)
            if account is None or not account.is_active or not account.hashed_password:
                return None, InvalidCredentials()

            now = utcnow()
            if account.locked_until and account.locked_until > now:
                remaining = int((account.locked_until - now).total_seconds()) + 1
                return None, AccountLocked(remaining)

            if not verify_password(password, account.hashed_password):
                account.failed_login_attempts = (account.failed_login_attempts or 0) + 1
                if account.failed_login_attempts >= self._max_failed_logins:
                    account.locked_until = now + self._lockout
                    account.failed_login_attempts = 0
                    logger.warning("Account %s locked until %s", account.id, account.locked_until)
                return None, InvalidCredentials()

            account.failed_login_attempts = 0
            account.locked_until = None
            return account, None

        account, error = await self._uow.execute_in_transaction(_attempt)
        if error is not None:
            raise error
        return account
