from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum as SAEnum, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from order_delivery.database import Base
from order_delivery.enums import AccountRole
from order_delivery.models.mixins import TimestampMixin, UUIDPrimaryKeyMixin


class Account(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Permanent, phone-keyed account created by registration finalization."""

    __tablename__ = "accounts"

    phone_number: Mapped[str] = mapped_column(
        String(20), unique=True, nullable=False, index=True
    )
    # Registration always sets it; login rejects an account without one
    hashed_password: Mapped[str | None] = mapped_column(String(255))
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), default="")
    national_id_number: Mapped[str] = mapped_column(String(14), nullable=False)
    personal_photo_url: Mapped[str] = mapped_column(String(500), nullable=False)
    national_id_front_photo_url: Mapped[str] = mapped_column(String(500), nullable=False)
    national_id_back_photo_url: Mapped[str] = mapped_column(String(500), nullable=False)
    role: Mapped[AccountRole] = mapped_column(SAEnum(AccountRole), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Lockout policy state
    failed_login_attempts: Mapped[int] = mapped_column(Integer, default=0)
    locked_until: Mapped[datetime | None] = mapped_column(DateTime)
    # Bumped on logout and password reset; older access tokens stop working
    token_version: Mapped[int] = mapped_column(Integer, default=0)

    # Explicit eager loading only (repository `includes=`); never lazy I/O
    merchant = relationship("Merchant", back_populates="account", uselist=False, lazy="raise")
    driver = relationship("Driver", back_populates="account", uselist=False, lazy="raise")
