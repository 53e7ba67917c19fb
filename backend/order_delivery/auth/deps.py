"""FastAPI dependencies for bearer-authenticated routes.

Dependencies:
  get_current_account → decode the access token, load the account, return it
"""

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer

from order_delivery.auth.jwt import decode_token
from order_delivery.middleware.exceptions import InvalidCredentials
from order_delivery.models.account import Account
from order_delivery.services.accounts import AccountStore
from order_delivery.unit_of_work import UnitOfWork, get_unit_of_work

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


async def get_current_account(
    token: str = Depends(oauth2_scheme),
    uow: UnitOfWork = Depends(get_unit_of_work),
) -> Account:
    payload = decode_token(token)
    account_id: str | None = payload.get("sub")
    if not account_id or payload.get("type") != "access":
        raise InvalidCredentials("Invalid or expired token")

    account = await AccountStore(uow).get(account_id)
    if account is None or not account.is_active:
        raise InvalidCredentials("Account not found or inactive")

    # Logout and password reset bump the version
    if payload.get("ver", 0) != (account.token_version or 0):
        raise InvalidCredentials("Session expired. Please log in again.")

    return account
