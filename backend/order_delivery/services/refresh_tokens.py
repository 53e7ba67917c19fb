"""Persisted refresh tokens: issue, rotate on use, revoke.

Every refresh JWT carries a `jti` that must match a live row in
`refresh_tokens`. A refresh revokes the presented row and issues a new
pair, so each refresh token works once. Only the newest
`max_refresh_tokens_per_account` rows are kept per account.

Revoking everything (logout, password change) also bumps the account's
`token_version`, so access tokens issued before it are refused too.
"""

import logging

from order_delivery.auth.jwt import TokenIssuer, TokenPair, decode_token, token_issuer
from order_delivery.config import settings
from order_delivery.middleware.exceptions import InvalidCredentials
from order_delivery.models.account import Account
from order_delivery.models.mixins import utcnow
from order_delivery.models.refresh_token import RefreshToken
from order_delivery.services.accounts import AccountStore
from order_delivery.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)


class RefreshTokenStore:
    def __init__(
        self,
        uow: UnitOfWork,
        issuer: TokenIssuer = token_issuer,
        max_per_account: int = settings.max_refresh_tokens_per_account,
    ):
        self._uow = uow
        self._issuer = issuer
        self._max_per_account = max_per_account

    async def issue(self, account: Account) -> TokenPair:
        return await self._uow.execute_in_transaction(lambda: self._issue(account))

    async def rotate(self, refresh_token: str) -> tuple[Account, TokenPair]:
        """Exchange a live refresh token for a new pair; the old one is revoked."""
        payload = decode_token(refresh_token)
        account_id = payload.get("sub")
        jti = payload.get("jti")
        if not account_id or not jti or payload.get("type") != "refresh":
            raise InvalidCredentials("Invalid or expired refresh token")

        async def _work():
            record = await self._uow.repository(RefreshToken).first(
                RefreshToken.jti == jti, for_update=True
            )
            now = utcnow()
            if record is None or record.account_id != account_id or not record.is_active(now):
                if record is not None and record.replaced_by_jti:
                    logger.warning("Rotated refresh token reused for account %s", account_id)
                raise InvalidCredentials("Invalid or expired refresh token")

            account = await AccountStore(self._uow).get(account_id)
            if account is None or not account.is_active:
                raise InvalidCredentials("Account not found or inactive")

            record.revoked_at = now
            record.revoked_reason = "Rotated"
            tokens = await self._issue(account)
            record.replaced_by_jti = tokens.refresh_jti
            return account, tokens

        return await self._uow.execute_in_transaction(_work)

    async def revoke_all(self, account_id: str, reason: str) -> int:
        """Revoke every live refresh token of the account. Returns the count.

        Also bumps the account's token_version, which retires the access
        tokens already handed out.
        """

        async def _work():
            account = await self._uow.repository(Account).first(
                Account.id == account_id, for_update=True
            )
            if account is not None:
                account.token_version = (account.token_version or 0) + 1

            repo = self._uow.repository(RefreshToken)
            live = await repo.find(
                RefreshToken.account_id == account_id,
                RefreshToken.revoked_at.is_(None),
            )
            now = utcnow()
            for record in live:
                record.revoked_at = now
                record.revoked_reason = reason
            repo.update_range(live)
            return len(live)

        revoked = await self._uow.execute_in_transaction(_work)
        logger.info("Revoked %d refresh token(s) for account %s: %s", revoked, account_id, reason)
        return revoked

    async def _issue(self, account: Account) -> TokenPair:
        tokens = self._issuer.issue(account)
        repo = self._uow.repository(RefreshToken)
        await repo.add(
            RefreshToken(
                account_id=account.id,
                jti=tokens.refresh_jti,
                expires_at=tokens.refresh_expires_at,
            )
        )
        await self._uow.save_changes()

        kept = await repo.find(
            RefreshToken.account_id == account.id,
            order_by=RefreshToken.created_at,
            ascending=False,
        )
        if len(kept) > self._max_per_account:
            await repo.remove_range(kept[self._max_per_account:])
        return tokens
