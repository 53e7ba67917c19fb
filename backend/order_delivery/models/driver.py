"""Driver-side permanent records.

A Driver belongs to one Account; Vehicle and Residence each belong to
one Driver. All links are explicit foreign keys; relationships exist only
for eager loading through the repository (`lazy="raise"` everywhere).
"""

from sqlalchemy import Boolean, Enum as SAEnum, Float, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from order_delivery.database import Base
from order_delivery.enums import VehicleType
from order_delivery.models.mixins import TimestampMixin, UUIDPrimaryKeyMixin


class Driver(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "drivers"

    account_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("accounts.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    vehicle_type: Mapped[VehicleType] = mapped_column(SAEnum(VehicleType), nullable=False)
    is_available: Mapped[bool] = mapped_column(Boolean, default=False)
    current_latitude: Mapped[float] = mapped_column(Float, nullable=False)
    current_longitude: Mapped[float] = mapped_column(Float, nullable=False)
    rating: Mapped[float] = mapped_column(Float, default=0.0)
    total_deliveries: Mapped[int] = mapped_column(Integer, default=0)

    account = relationship("Account", back_populates="driver", lazy="raise")
    vehicle = relationship("Vehicle", back_populates="driver", uselist=False, lazy="raise")
    residence = relationship("Residence", back_populates="driver", uselist=False, lazy="raise")


class Vehicle(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "vehicles"

    driver_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("drivers.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    vehicle_brand: Mapped[str] = mapped_column(String(100), nullable=False)
    vehicle_plate_number: Mapped[str] = mapped_column(String(20), nullable=False)
    vehicle_issue_year: Mapped[int] = mapped_column(Integer, nullable=False)
    chassis_photo_url: Mapped[str] = mapped_column(String(500), nullable=False)
    inspection_photo_url: Mapped[str] = mapped_column(String(500), nullable=False)

    driver = relationship("Driver", back_populates="vehicle", lazy="raise")


class Residence(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "residences"

    driver_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("drivers.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    province: Mapped[str] = mapped_column(String(100), nullable=False)
    city: Mapped[str] = mapped_column(String(100), nullable=False)
    district: Mapped[str] = mapped_column(String(100), nullable=False)
    street: Mapped[str] = mapped_column(String(255), nullable=False)
    building_number: Mapped[str] = mapped_column(String(20), nullable=False)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)

    driver = relationship("Driver", back_populates="residence", lazy="raise")
