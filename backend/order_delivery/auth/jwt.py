"""JWT token creation and decoding.

Token claims:
  - sub:    account ID
  - role:   "Merchant" | "Driver"
  - phone:  account phone number (access and password-reset tokens)
  - type:   "access" | "refresh" | "password_reset"
  - jti:    refresh token id, matched against the refresh_tokens table
  - pwd:    fingerprint of the password hash a reset token was issued against
  - ver:    account token_version at issue time (access tokens)
  - exp:    expiry timestamp
"""

import hashlib
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from order_delivery.config import settings
from order_delivery.models.account import Account
from order_delivery.models.mixins import new_id

ALGORITHM = settings.jwt_algorithm


def create_access_token(
    account_id: str,
    role: str,
    phone_number: str,
    expires_delta: timedelta | None = None,
    token_version: int = 0,
) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    payload = {
        "sub": account_id,
        "role": role,
        "phone": phone_number,
        "type": "access",
        "ver": token_version,
        "exp": expire,
    }
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def create_refresh_token(
    account_id: str,
    role: str,
    jti: str | None = None,
    expires_at: datetime | None = None,
) -> str:
    expire = expires_at or (
        datetime.now(timezone.utc) + timedelta(days=settings.refresh_token_expire_days)
    )
    payload = {
        "sub": account_id,
        "role": role,
        "type": "refresh",
        "exp": expire,
    }
    if jti:
        payload["jti"] = jti
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def password_fingerprint(hashed_password: str | None) -> str:
    """Short digest of the stored hash; changes whenever the password does."""
    return hashlib.sha256((hashed_password or "").encode()).hexdigest()[:16]


def create_reset_token(account: Account, expires_delta: timedelta | None = None) -> str:
    """Single-use proof that `account`'s phone passed a reset code check.

    Bound to the current password hash, so it stops working once the
    password has been changed with it.
    """
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.reset_token_expire_minutes)
    )
    payload = {
        "sub": account.id,
        "phone": account.phone_number,
        "pwd": password_fingerprint(account.hashed_password),
        "type": "password_reset",
        "exp": expire,
    }
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode and validate a JWT. Returns empty dict on failure."""
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return {}


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    refresh_jti: str
    # Naive UTC, like every stored timestamp
    refresh_expires_at: datetime


class TokenIssuer:
    def issue(self, account: Account) -> TokenPair:
        role = account.role.value
        jti = new_id()
        expires_at = datetime.now(timezone.utc) + timedelta(
            days=settings.refresh_token_expire_days
        )
        return TokenPair(
            access_token=create_access_token(
                account.id, role, account.phone_number,
                token_version=account.token_version or 0,
            ),
            refresh_token=create_refresh_token(account.id, role, jti, expires_at),
            refresh_jti=jti,
            refresh_expires_at=expires_at.replace(tzinfo=None),
        )


token_issuer = TokenIssuer()
