"""SMS verification codes via Twilio with expiry, cooldown and attempt cap.

Storage is an in-memory dict keyed by (purpose, phone number), which is
fine for a single API process. Codes are single use, and a registration
code never satisfies a password reset check or the other way round.

Flow:
  1. POST /api/registration/start (or /resend-code) calls `send()`:
     generate a 6-digit code, store it, text it via Twilio.
  2. POST /api/registration/verify-phone calls `verify()` with the
     submitted code.

Password reset runs the same two calls with purpose="password_reset"
from POST /api/auth/forgot-password and POST /api/auth/verify-code.

With no Twilio credentials configured the code is only logged, and the
registration router echoes it back as `dev_code`.
"""

import asyncio
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Callable, Protocol

from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from order_delivery.config import settings
from order_delivery.middleware.exceptions import OtpCooldown, OtpDeliveryFailed

logger = logging.getLogger(__name__)

OTP_LENGTH = 6

REGISTRATION = "registration"
PASSWORD_RESET = "password_reset"

_MESSAGES = {
    REGISTRATION: "Your verification code is: {code}",
    PASSWORD_RESET: "Your password reset code is: {code}",
}


class SmsSender(Protocol):
    def send(self, to: str, body: str) -> None: ...


class TwilioSmsSender:
    def __init__(self, account_sid: str, auth_token: str, from_number: str):
        self._client = Client(account_sid, auth_token)
        self._from_number = from_number

    def send(self, to: str, body: str) -> None:
        self._client.messages.create(body=body, from_=self._from_number, to=to)


@dataclass
class _PendingCode:
    code: str
    created_at: float
    attempts: int = 0


def generate_code() -> str:
    return "".join(secrets.choice("0123456789") for _ in range(OTP_LENGTH))


class OtpGate:
    def __init__(
        self,
        sender: SmsSender | None = None,
        expiry_seconds: int = 600,
        cooldown_seconds: int = 60,
        max_attempts: int = 5,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._sender = sender
        self._expiry_seconds = expiry_seconds
        self._cooldown_seconds = cooldown_seconds
        self._max_attempts = max_attempts
        self._clock = clock
        self._store: dict[tuple[str, str], _PendingCode] = {}

    @property
    def delivers_sms(self) -> bool:
        return self._sender is not None

    async def send(self, phone: str, purpose: str = REGISTRATION) -> str:
        """Issue a fresh code for `phone` and text it. Returns the code.

        Raises OtpCooldown when the previous code is younger than the
        cooldown, OtpDeliveryFailed when the SMS provider rejects it.
        """
        now = self._clock()
        key = (purpose, phone)
        existing = self._store.get(key)
        if existing and (now - existing.created_at) < self._cooldown_seconds:
            raise OtpCooldown(max(1, int(self._cooldown_seconds - (now - existing.created_at))))

        code = generate_code()
        self._store[key] = _PendingCode(code=code, created_at=now)

        if self._sender is None:
            logger.info("SMS delivery not configured; %s code for %s is %s", purpose, phone, code)
            return code

        try:
            await asyncio.to_thread(
                self._sender.send, phone, _MESSAGES[purpose].format(code=code)
            )
        except TwilioException as exc:
            self._store.pop(key, None)
            logger.error("SMS delivery to %s failed: %s", phone, exc)
            raise OtpDeliveryFailed() from exc

        logger.info("%s code sent to %s", purpose, phone)
        return code

    async def verify(self, phone: str, code: str, purpose: str = REGISTRATION) -> bool:
        key = (purpose, phone)
        entry = self._store.get(key)
        if entry is None:
            return False

        if (self._clock() - entry.created_at) > self._expiry_seconds:
            self._store.pop(key, None)
            return False

        if entry.attempts >= self._max_attempts:
            self._store.pop(key, None)
            return False

        entry.attempts += 1
        if secrets.compare_digest(entry.code.encode(), code.encode()):
            self._store.pop(key, None)
            return True
        return False

    def discard(self, phone: str, purpose: str = REGISTRATION) -> None:
        self._store.pop((purpose, phone), None)


def build_otp_gate() -> OtpGate:
    sender = None
    if settings.twilio_account_sid:
        sender = TwilioSmsSender(
            settings.twilio_account_sid,
            settings.twilio_auth_token,
            settings.twilio_from_number,
        )
    return OtpGate(
        sender=sender,
        expiry_seconds=settings.otp_expiry_seconds,
        cooldown_seconds=settings.otp_cooldown_seconds,
        max_attempts=settings.otp_max_attempts,
    )


def dev_code(gate: OtpGate, code: str | None) -> str | None:
    """The code to echo back to the client, only when nothing texts it."""
    if gate.delivers_sms or settings.environment == "production":
        return None
    return code


otp_gate = build_otp_gate()


def get_otp_gate() -> OtpGate:
    return otp_gate
