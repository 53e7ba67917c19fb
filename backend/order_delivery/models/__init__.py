"""Aggregate model imports for Alembic auto-detection."""

from order_delivery.enums import AccountRole, RegistrationStep, VehicleType  # noqa: F401

# Staging
from order_delivery.models.registration_session import RegistrationSession  # noqa: F401

# Permanent accounts
from order_delivery.models.account import Account  # noqa: F401
from order_delivery.models.merchant import Merchant  # noqa: F401
from order_delivery.models.driver import Driver, Residence, Vehicle  # noqa: F401
from order_delivery.models.refresh_token import RefreshToken  # noqa: F401
