"""Pydantic schemas for the registration wizard.

Each step has up to three shapes:
  - `XxxFields`   → the client-supplied fields and their validation rules
  - `XxxInfo`     → the staged payload stored on the session: the fields
                    plus resolved photo URLs, tagged with `kind` and
                    `schema_version`
  - `XxxRequest`  → JSON request body (`phone_number` + fields)

Staged payloads form a discriminated union on `kind`, so a blob read back
from the database is either a fully typed payload or a validation error.
"""

from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator

from order_delivery.enums import AccountRole, RegistrationStep, VehicleType
from order_delivery.schemas.validators import (
    sanitize_string,
    validate_national_id,
    validate_otp_code,
    validate_password_strength,
    validate_phone,
    validate_plate_number,
    validate_vehicle_year,
)

PAYLOAD_SCHEMA_VERSION = 1

Latitude = Annotated[float, Field(ge=-90, le=90)]
Longitude = Annotated[float, Field(ge=-180, le=180)]


class _PhoneNumberMixin(BaseModel):
    phone_number: str

    @field_validator("phone_number")
    @classmethod
    def _validate_phone(cls, v: str) -> str:
        return validate_phone(v)


class _StagedPayload(BaseModel):
    schema_version: Literal[1] = PAYLOAD_SCHEMA_VERSION


# ── Basic info (all roles) ──────────────────────────────────

class BasicInfoFields(BaseModel):
    full_name: str
    national_id_number: str

    @field_validator("full_name")
    @classmethod
    def _validate_full_name(cls, v: str) -> str:
        # Split into first/last name columns of 100 characters each
        return sanitize_string(v, max_length=100)

    @field_validator("national_id_number")
    @classmethod
    def _validate_national_id(cls, v: str) -> str:
        return validate_national_id(v)


class BasicInfo(_StagedPayload, BasicInfoFields):
    kind: Literal["basic_info"] = "basic_info"
    personal_photo_url: str
    national_id_front_photo_url: str
    national_id_back_photo_url: str


# ── Merchant info ───────────────────────────────────────────

class MerchantInfoFields(BaseModel):
    store_name: str
    store_type: str
    store_address: str
    store_latitude: Latitude
    store_longitude: Longitude
    business_license_number: str | None = None

    @field_validator("store_name", "store_address")
    @classmethod
    def _validate_text(cls, v: str) -> str:
        return sanitize_string(v, max_length=255)

    @field_validator("store_type")
    @classmethod
    def _validate_store_type(cls, v: str) -> str:
        return sanitize_string(v, max_length=100)

    @field_validator("business_license_number")
    @classmethod
    def _validate_license(cls, v: str | None) -> str | None:
        if v is None:
            return None
        return sanitize_string(v, max_length=100)


class MerchantInfo(_StagedPayload, MerchantInfoFields):
    kind: Literal["merchant_info"] = "merchant_info"


class MerchantInfoRequest(_PhoneNumberMixin, MerchantInfoFields):
    def to_payload(self) -> MerchantInfo:
        return MerchantInfo(**self.model_dump(exclude={"phone_number"}))


# ── Driver info ─────────────────────────────────────────────

class DriverInfoFields(BaseModel):
    vehicle_type: VehicleType
    is_available: bool = False
    current_latitude: Latitude
    current_longitude: Longitude


class DriverInfo(_StagedPayload, DriverInfoFields):
    kind: Literal["driver_info"] = "driver_info"


class DriverInfoRequest(_PhoneNumberMixin, DriverInfoFields):
    def to_payload(self) -> DriverInfo:
        return DriverInfo(**self.model_dump(exclude={"phone_number"}))


# ── Vehicle info (drivers) ──────────────────────────────────

class VehicleInfoFields(BaseModel):
    vehicle_brand: str
    vehicle_plate_number: str
    vehicle_issue_year: int

    @field_validator("vehicle_brand")
    @classmethod
    def _validate_brand(cls, v: str) -> str:
        return sanitize_string(v, max_length=100)

    @field_validator("vehicle_plate_number")
    @classmethod
    def _validate_plate(cls, v: str) -> str:
        return validate_plate_number(v)

    @field_validator("vehicle_issue_year")
    @classmethod
    def _validate_year(cls, v: int) -> int:
        return validate_vehicle_year(v)


class VehicleInfo(_StagedPayload, VehicleInfoFields):
    kind: Literal["vehicle_info"] = "vehicle_info"
    chassis_photo_url: str
    inspection_photo_url: str


# ── Residence info (drivers) ────────────────────────────────

class ResidenceInfoFields(BaseModel):
    province: str
    city: str
    district: str
    street: str
    building_number: str
    latitude: Latitude
    longitude: Longitude

    @field_validator("province", "city", "district")
    @classmethod
    def _validate_area(cls, v: str) -> str:
        return sanitize_string(v, max_length=100)

    @field_validator("street")
    @classmethod
    def _validate_street(cls, v: str) -> str:
        return sanitize_string(v, max_length=255)

    @field_validator("building_number")
    @classmethod
    def _validate_building_number(cls, v: str) -> str:
        return sanitize_string(v, max_length=20)


class ResidenceInfo(_StagedPayload, ResidenceInfoFields):
    kind: Literal["residence_info"] = "residence_info"


class ResidenceInfoRequest(_PhoneNumberMixin, ResidenceInfoFields):
    def to_payload(self) -> ResidenceInfo:
        return ResidenceInfo(**self.model_dump(exclude={"phone_number"}))


# ── Tagged union of staged payloads ─────────────────────────

StepPayload = Annotated[
    Union[BasicInfo, MerchantInfo, DriverInfo, VehicleInfo, ResidenceInfo],
    Field(discriminator="kind"),
]

_payload_adapter: TypeAdapter = TypeAdapter(StepPayload)


def parse_payload(data: dict) -> StepPayload:
    """Parse a stored blob back into its typed payload.

    Raises pydantic.ValidationError for unknown kinds, unsupported
    schema versions, or fields that no longer validate.
    """
    return _payload_adapter.validate_python(data)


# ── Wizard requests without a step payload ──────────────────

class StartRegistrationRequest(_PhoneNumberMixin):
    role: AccountRole


class PhoneNumberRequest(_PhoneNumberMixin):
    pass


class VerifyPhoneRequest(_PhoneNumberMixin):
    code: str

    @field_validator("code")
    @classmethod
    def _validate_code(cls, v: str) -> str:
        return validate_otp_code(v)


class SetPasswordRequest(_PhoneNumberMixin):
    password: str

    @field_validator("password")
    @classmethod
    def _validate_password(cls, v: str) -> str:
        return validate_password_strength(v)


# ── Progress (read model) ───────────────────────────────────

class RegistrationProgress(BaseModel):
    """Client view of a staging session. Never exposes id or credential."""
    phone_number: str
    is_phone_verified: bool
    role: AccountRole | None
    step: RegistrationStep
    completed_steps: list[RegistrationStep]
    next_step: RegistrationStep | None
    has_password: bool
    is_ready_to_finalize: bool
    created_at: datetime
    updated_at: datetime


class StartRegistrationResponse(BaseModel):
    created: bool
    progress: RegistrationProgress
    # Echoed only when SMS delivery is not configured (development)
    dev_code: str | None = None


class CodeSentResponse(BaseModel):
    message: str = "Verification code sent"
    dev_code: str | None = None
