"""Staging record for an in-progress registration.

One row per phone number (UNIQUE) until the registration is finalized,
at which point the row is hard-deleted in the same transaction that
creates the permanent account.

Each wizard step stores its data as a tagged, versioned JSON payload
(see order_delivery.schemas.registration). The columns are only ever
read and written through `get_payload()` / `set_payload()` so a blob
with an unknown shape never leaks into business logic.
"""

from pydantic import ValidationError
from sqlalchemy import Boolean, Enum as SAEnum, Index, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from order_delivery.database import Base
from order_delivery.enums import AccountRole, RegistrationStep
from order_delivery.models.mixins import TimestampMixin, UUIDPrimaryKeyMixin, utcnow
from order_delivery.schemas.registration import StepPayload, parse_payload

PAYLOAD_KINDS = (
    "basic_info",
    "merchant_info",
    "driver_info",
    "vehicle_info",
    "residence_info",
)


class StagedPayloadCorrupt(Exception):
    """A stored step payload no longer parses against its schema."""

    def __init__(self, kind: str, errors: list):
        self.kind = kind
        self.errors = errors
        super().__init__(f"Staged {kind} payload is corrupt")


class RegistrationSession(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "registration_sessions"
    __table_args__ = (
        # Stale-session purge scans by last touch
        Index("ix_registration_sessions_updated_at", "updated_at"),
    )

    phone_number: Mapped[str] = mapped_column(
        String(20), unique=True, nullable=False, index=True
    )
    is_phone_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    role: Mapped[AccountRole | None] = mapped_column(SAEnum(AccountRole))

    basic_info: Mapped[dict | None] = mapped_column(JSON, default=None)
    merchant_info: Mapped[dict | None] = mapped_column(JSON, default=None)
    driver_info: Mapped[dict | None] = mapped_column(JSON, default=None)
    vehicle_info: Mapped[dict | None] = mapped_column(JSON, default=None)
    residence_info: Mapped[dict | None] = mapped_column(JSON, default=None)

    # bcrypt hash only; plaintext is never staged
    password_hash: Mapped[str | None] = mapped_column(String(255))

    step: Mapped[RegistrationStep] = mapped_column(
        SAEnum(RegistrationStep), default=RegistrationStep.STARTED
    )

    def has_payload(self, kind: str) -> bool:
        return bool(getattr(self, kind))

    def get_payload(self, kind: str) -> StepPayload | None:
        if kind not in PAYLOAD_KINDS:
            raise KeyError(kind)
        raw = getattr(self, kind)
        if not raw:
            return None
        try:
            payload = parse_payload(raw)
        except ValidationError as exc:
            raise StagedPayloadCorrupt(kind, exc.errors()) from exc
        if payload.kind != kind:
            raise StagedPayloadCorrupt(kind, [{"msg": f"stored kind is {payload.kind}"}])
        return payload

    def set_payload(self, payload: StepPayload) -> None:
        # Assign a fresh dict so the JSON column registers as changed
        setattr(self, payload.kind, payload.model_dump(mode="json"))
        self.updated_at = utcnow()
