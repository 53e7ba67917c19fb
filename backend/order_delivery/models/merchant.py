from sqlalchemy import Float, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from order_delivery.database import Base
from order_delivery.models.mixins import TimestampMixin, UUIDPrimaryKeyMixin


class Merchant(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "merchants"

    account_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("accounts.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    store_name: Mapped[str] = mapped_column(String(255), nullable=False)
    store_type: Mapped[str] = mapped_column(String(100), nullable=False)
    store_address: Mapped[str] = mapped_column(String(255), nullable=False)
    store_latitude: Mapped[float] = mapped_column(Float, nullable=False)
    store_longitude: Mapped[float] = mapped_column(Float, nullable=False)
    business_license_number: Mapped[str | None] = mapped_column(String(100))
    rating: Mapped[float] = mapped_column(Float, default=0.0)
    total_orders: Mapped[int] = mapped_column(Integer, default=0)

    account = relationship("Account", back_populates="merchant", lazy="raise")
