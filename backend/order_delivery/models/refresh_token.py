from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from order_delivery.database import Base
from order_delivery.models.mixins import UUIDPrimaryKeyMixin, utcnow


class RefreshToken(UUIDPrimaryKeyMixin, Base):
    """Server-side record of an issued refresh token.

    The JWT itself carries only the `jti`; a refresh is honoured only
    while this row is neither revoked nor expired.
    """

    __tablename__ = "refresh_tokens"

    account_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    jti: Mapped[str] = mapped_column(String(36), unique=True, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime)
    revoked_reason: Mapped[str | None] = mapped_column(String(200))
    replaced_by_jti: Mapped[str | None] = mapped_column(String(36))

    def is_active(self, now: datetime) -> bool:
        return self.revoked_at is None and self.expires_at > now
