from datetime import datetime

from pydantic import BaseModel, field_validator, model_validator

from order_delivery.enums import VehicleType
from order_delivery.schemas.validators import (
    validate_otp_code,
    validate_password_strength,
    validate_phone,
)


class AccountOut(BaseModel):
    id: str
    phone_number: str
    first_name: str
    last_name: str
    role: str
    is_active: bool

    model_config = {"from_attributes": True}


# ── Login ────────────────────────────────────────────────────

class LoginRequest(BaseModel):
    phone_number: str
    password: str

    @field_validator("phone_number")
    @classmethod
    def _validate_phone(cls, v: str) -> str:
        return validate_phone(v)


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    account: AccountOut


# ── Token refresh ────────────────────────────────────────────

class RefreshRequest(BaseModel):
    refresh_token: str


# ── Logout / profile ─────────────────────────────────────────

class LogoutResponse(BaseModel):
    message: str = "Logged out"
    revoked: int


class MerchantProfile(BaseModel):
    store_name: str
    store_type: str
    store_address: str
    business_license_number: str | None = None
    rating: float
    total_orders: int

    model_config = {"from_attributes": True}


class DriverProfile(BaseModel):
    vehicle_type: VehicleType
    is_available: bool
    rating: float
    total_deliveries: int

    model_config = {"from_attributes": True}


class ProfileResponse(AccountOut):
    created_at: datetime
    merchant: MerchantProfile | None = None
    driver: DriverProfile | None = None


# ── Password reset ───────────────────────────────────────────

class ForgotPasswordRequest(BaseModel):
    phone_number: str

    @field_validator("phone_number")
    @classmethod
    def _validate_phone(cls, v: str) -> str:
        return validate_phone(v)


class ForgotPasswordResponse(BaseModel):
    # Same answer whether or not the phone is registered
    message: str = "If the phone number is registered, a reset code has been sent"
    dev_code: str | None = None


class VerifyResetCodeRequest(BaseModel):
    phone_number: str
    code: str

    @field_validator("phone_number")
    @classmethod
    def _validate_phone(cls, v: str) -> str:
        return validate_phone(v)

    @field_validator("code")
    @classmethod
    def _validate_code(cls, v: str) -> str:
        return validate_otp_code(v)


class ResetTokenResponse(BaseModel):
    reset_token: str
    expires_in: int


class SetNewPasswordRequest(BaseModel):
    reset_token: str
    password: str
    confirm_password: str

    @field_validator("password")
    @classmethod
    def _strong_password(cls, v: str) -> str:
        return validate_password_strength(v)

    @model_validator(mode="after")
    def _passwords_match(self) -> "SetNewPasswordRequest":
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


class MessageResponse(BaseModel):
    message: str
