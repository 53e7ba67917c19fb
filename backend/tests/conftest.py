"""Pytest configuration and fixtures for OrderDelivery tests.

Every test gets its own SQLite database file (aiosqlite) with the full
schema, so concurrent units of work really use separate connections.
"""

import os

# Must be set before order_delivery.config is imported
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENVIRONMENT"] = "test"
os.environ["DEBUG"] = "false"
os.environ["TWILIO_ACCOUNT_SID"] = ""
os.environ["SESSION_PURGE_INTERVAL_MINUTES"] = "0"

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from order_delivery.auth.otp import OtpGate, get_otp_gate
from order_delivery.auth.password import hash_password
from order_delivery.database import Base
from order_delivery.enums import AccountRole, VehicleType
from order_delivery.main import app
from order_delivery.models import Account
from order_delivery.schemas.registration import (
    BasicInfo,
    DriverInfo,
    MerchantInfo,
    ResidenceInfo,
    VehicleInfo,
)
from order_delivery.services.blob_store import BlobStore, get_blob_store
from order_delivery.services.finalizer import RegistrationFinalizer
from order_delivery.services.registration import RegistrationStateMachine
from order_delivery.unit_of_work import UnitOfWork, get_uow_factory


STAGED_PASSWORD = "Str0ng!pass"


class FakeClock:
    """Manually advanced monotonic clock for OTP expiry/cooldown tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ── Database ─────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def uow_factory(session_factory):
    return lambda: UnitOfWork(session_factory)


@pytest_asyncio.fixture
async def uow(uow_factory) -> AsyncGenerator[UnitOfWork, None]:
    async with uow_factory() as uow:
        yield uow


# ── Collaborators ────────────────────────────────────────────────

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def otp_gate(clock) -> OtpGate:
    return OtpGate(
        sender=None,
        expiry_seconds=600,
        cooldown_seconds=60,
        max_attempts=5,
        clock=clock,
    )


@pytest.fixture
def blob_store(tmp_path) -> BlobStore:
    return BlobStore(str(tmp_path / "uploads"), "http://test/uploads", 5 * 1024 * 1024)


@pytest.fixture
def machine(uow, otp_gate) -> RegistrationStateMachine:
    return RegistrationStateMachine(uow, otp_gate)


@pytest.fixture
def finalizer(uow_factory) -> RegistrationFinalizer:
    return RegistrationFinalizer(uow_factory)


# ── Sample data ──────────────────────────────────────────────────

class Payloads:
    """Valid step payloads; override any field with keyword arguments."""

    @staticmethod
    def basic(**overrides) -> BasicInfo:
        data = {
            "full_name": "Omar Hassan Ali",
            "national_id_number": "29801011234567",
            "personal_photo_url": "http://test/uploads/personal-photos/a.jpg",
            "national_id_front_photo_url": "http://test/uploads/national-id-front/b.jpg",
            "national_id_back_photo_url": "http://test/uploads/national-id-back/c.jpg",
        }
        data.update(overrides)
        return BasicInfo(**data)

    @staticmethod
    def merchant(**overrides) -> MerchantInfo:
        data = {
            "store_name": "Corner Grocery",
            "store_type": "grocery",
            "store_address": "12 Tahrir St",
            "store_latitude": 30.0444,
            "store_longitude": 31.2357,
        }
        data.update(overrides)
        return MerchantInfo(**data)

    @staticmethod
    def driver(**overrides) -> DriverInfo:
        data = {
            "vehicle_type": VehicleType.MOTORCYCLE,
            "is_available": True,
            "current_latitude": 30.05,
            "current_longitude": 31.24,
        }
        data.update(overrides)
        return DriverInfo(**data)

    @staticmethod
    def vehicle(**overrides) -> VehicleInfo:
        data = {
            "vehicle_brand": "Honda",
            "vehicle_plate_number": "أب123",
            "vehicle_issue_year": 2020,
            "chassis_photo_url": "http://test/uploads/vehicle-chassis/d.jpg",
            "inspection_photo_url": "http://test/uploads/vehicle-inspection/e.jpg",
        }
        data.update(overrides)
        return VehicleInfo(**data)

    @staticmethod
    def residence(**overrides) -> ResidenceInfo:
        data = {
            "province": "Cairo",
            "city": "Cairo",
            "district": "Zamalek",
            "street": "26th of July St",
            "building_number": "14B",
            "latitude": 30.06,
            "longitude": 31.22,
        }
        data.update(overrides)
        return ResidenceInfo(**data)


@pytest.fixture
def payloads() -> type[Payloads]:
    return Payloads


@pytest.fixture
def start_verified(machine):
    """Start a session for (phone, role) and verify it with the issued code."""

    async def _start(phone: str, role: AccountRole):
        outcome = await machine.start_or_resume(phone, role)
        return await machine.verify_phone(phone, outcome.code)

    return _start


@pytest.fixture
def complete_merchant(machine, start_verified, payloads):
    async def _complete(phone: str):
        await start_verified(phone, AccountRole.MERCHANT)
        await machine.set_password(phone, STAGED_PASSWORD)
        await machine.set_basic_info(phone, payloads.basic())
        return await machine.set_merchant_info(phone, payloads.merchant())

    return _complete


@pytest.fixture
def complete_driver(machine, start_verified, payloads):
    async def _complete(phone: str):
        await start_verified(phone, AccountRole.DRIVER)
        await machine.set_password(phone, STAGED_PASSWORD)
        await machine.set_basic_info(phone, payloads.basic())
        await machine.set_driver_info(phone, payloads.driver())
        await machine.set_vehicle_info(phone, payloads.vehicle())
        return await machine.set_residence_info(phone, payloads.residence())

    return _complete


@pytest.fixture
def make_account():
    """Unsaved Account with every required column filled."""

    def _make(phone: str, role: AccountRole = AccountRole.MERCHANT, password: str | None = None):
        return Account(
            phone_number=phone,
            hashed_password=hash_password(password) if password else None,
            first_name="Test",
            last_name="Account",
            national_id_number="29801011234567",
            personal_photo_url="http://test/p.jpg",
            national_id_front_photo_url="http://test/f.jpg",
            national_id_back_photo_url="http://test/b.jpg",
            role=role,
            is_active=True,
        )

    return _make


# ── HTTP client ──────────────────────────────────────────────────

@pytest_asyncio.fixture
async def client(uow_factory, otp_gate, blob_store) -> AsyncGenerator[AsyncClient, None]:
    """API client wired to the per-test database, OTP gate and upload dir."""
    app.dependency_overrides[get_uow_factory] = lambda: uow_factory
    app.dependency_overrides[get_otp_gate] = lambda: otp_gate
    app.dependency_overrides[get_blob_store] = lambda: blob_store

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "api: HTTP API tests")
    config.addinivalue_line("markers", "auth: Authentication tests")
    config.addinivalue_line("markers", "slow: Slow tests")
