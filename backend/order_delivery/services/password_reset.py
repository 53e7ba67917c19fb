"""Forgot-password flow for finalized accounts.

  1. request_code:     text a reset code (silently nothing for unknown phones)
  2. verify_code:      trade the code for a short-lived reset token
  3. set_new_password: replace the password; every refresh token is revoked

The reset token is bound to the password hash it was issued against, so
it is spent the moment the password changes.
"""

import logging

from order_delivery.auth.jwt import create_reset_token, decode_token, password_fingerprint
from order_delivery.auth.otp import PASSWORD_RESET, OtpGate
from order_delivery.middleware.exceptions import InvalidOrExpiredCode, InvalidResetToken
from order_delivery.models.account import Account
from order_delivery.services.accounts import AccountStore, PhoneAccountPolicy
from order_delivery.services.refresh_tokens import RefreshTokenStore
from order_delivery.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)


class PasswordResetFlow:
    def __init__(self, uow: UnitOfWork, otp_gate: OtpGate):
        self._uow = uow
        self._otp_gate = otp_gate
        self._accounts = AccountStore(uow)
        self._policy = PhoneAccountPolicy(uow)
        self._refresh_tokens = RefreshTokenStore(uow)

    async def request_code(self, phone_number: str) -> str | None:
        """Send a reset code. Returns it, or None when no active account has the phone."""
        phone_number = self._policy.normalize_phone(phone_number)
        account = await self._accounts.find_by_phone(phone_number)
        if account is None or not account.is_active:
            logger.info("Password reset requested for unregistered phone %s", phone_number)
            return None
        return await self._otp_gate.send(phone_number, purpose=PASSWORD_RESET)

    async def verify_code(self, phone_number: str, code: str) -> str:
        phone_number = self._policy.normalize_phone(phone_number)
        if not await self._otp_gate.verify(phone_number, code, purpose=PASSWORD_RESET):
            raise InvalidOrExpiredCode()

        account = await self._accounts.find_by_phone(phone_number)
        if account is None or not account.is_active:
            raise InvalidOrExpiredCode()
        return create_reset_token(account)

    async def set_new_password(self, reset_token: str, new_password: str) -> Account:
        payload = decode_token(reset_token)
        account_id = payload.get("sub")
        if not account_id or payload.get("type") != "password_reset":
            raise InvalidResetToken()

        async def _work():
            account = await self._uow.repository(Account).first(
                Account.id == account_id, for_update=True
            )
            if (
                account is None
                or not account.is_active
                or payload.get("pwd") != password_fingerprint(account.hashed_password)
            ):
                raise InvalidResetToken()

            self._policy.replace_password(account, new_password)
            await self._refresh_tokens.revoke_all(account.id, "Password changed")
            return account

        account = await self._uow.execute_in_transaction(_work)
        logger.info("Password reset for account %s", account.id)
        return account
