"""Staged payload schemas, validators, and reading payloads back from a session."""

from datetime import date

import pytest
from pydantic import ValidationError

from order_delivery.enums import AccountRole
from order_delivery.models.registration_session import RegistrationSession, StagedPayloadCorrupt
from order_delivery.schemas.registration import (
    BasicInfo,
    MerchantInfo,
    VehicleInfo,
    parse_payload,
)
from order_delivery.schemas.validators import (
    validate_national_id,
    validate_password_strength,
    validate_phone,
    validate_plate_number,
    validate_vehicle_year,
)


@pytest.mark.unit
class TestValidators:

    def test_phone_is_normalized(self):
        assert validate_phone("+1 555-123-4567") == "+15551234567"

    @pytest.mark.parametrize("phone", ["", "12345", "+1555abc4567", "+1234567890123456"])
    def test_invalid_phone(self, phone):
        with pytest.raises(ValueError):
            validate_phone(phone)

    def test_national_id_requires_14_digits(self):
        assert validate_national_id(" 29801011234567 ") == "29801011234567"
        with pytest.raises(ValueError, match="numeric"):
            validate_national_id("2980101123456X")
        with pytest.raises(ValueError, match="14 digits"):
            validate_national_id("123")

    def test_password_policy(self):
        assert validate_password_strength("Str0ng!pass") == "Str0ng!pass"
        for weak in ["Sh0rt!", "alllower1!", "ALLUPPER1!", "NoDigits!!", "NoSpecial12"]:
            with pytest.raises(ValueError):
                validate_password_strength(weak)

    def test_password_longer_than_bcrypt_limit_is_rejected(self):
        with pytest.raises(ValueError, match="72 bytes"):
            validate_password_strength("Aa1!" + "x" * 70)

    def test_plate_number(self):
        assert validate_plate_number("أ ب 123") == "أب123"
        with pytest.raises(ValueError, match="Arabic letter"):
            validate_plate_number("AB123")
        with pytest.raises(ValueError, match="digit"):
            validate_plate_number("أبج")
        with pytest.raises(ValueError, match="exceed"):
            validate_plate_number("أبج1234")

    def test_vehicle_year_range(self):
        assert validate_vehicle_year(2000) == 2000
        assert validate_vehicle_year(date.today().year) == date.today().year
        with pytest.raises(ValueError):
            validate_vehicle_year(1999)
        with pytest.raises(ValueError):
            validate_vehicle_year(date.today().year + 1)


@pytest.mark.unit
class TestPayloadSchemas:

    def test_payloads_are_tagged_and_versioned(self, payloads):
        dumped = payloads.merchant().model_dump(mode="json")
        assert dumped["kind"] == "merchant_info"
        assert dumped["schema_version"] == 1

    def test_parse_dispatches_on_kind(self, payloads):
        parsed = parse_payload(payloads.vehicle().model_dump(mode="json"))
        assert isinstance(parsed, VehicleInfo)
        assert parsed.vehicle_plate_number == "أب123"

    def test_unknown_schema_version_is_rejected(self, payloads):
        data = payloads.basic().model_dump(mode="json")
        data["schema_version"] = 2
        with pytest.raises(ValidationError):
            parse_payload(data)

    def test_unknown_kind_is_rejected(self):
        with pytest.raises(ValidationError):
            parse_payload({"kind": "bank_info", "schema_version": 1})

    @pytest.mark.parametrize("latitude", [-90.5, 91])
    def test_latitude_bounds(self, payloads, latitude):
        with pytest.raises(ValidationError):
            payloads.merchant(store_latitude=latitude)

    def test_markup_in_free_text_is_rejected(self, payloads):
        with pytest.raises(ValidationError):
            payloads.merchant(store_name="<script>alert(1)</script>")

    @pytest.mark.parametrize("builder,field,limit", [
        ("basic", "full_name", 100),
        ("merchant", "store_name", 255),
        ("merchant", "store_type", 100),
        ("merchant", "store_address", 255),
        ("merchant", "business_license_number", 100),
        ("residence", "province", 100),
        ("residence", "city", 100),
        ("residence", "district", 100),
        ("residence", "street", 255),
        ("residence", "building_number", 20),
    ])
    def test_text_fields_fit_their_columns(self, payloads, builder, field, limit):
        build = getattr(payloads, builder)
        assert len(getattr(build(**{field: "A" * limit}), field)) == limit
        with pytest.raises(ValidationError):
            build(**{field: "A" * (limit + 1)})

    def test_business_license_is_optional(self, payloads):
        assert payloads.merchant().business_license_number is None
        assert MerchantInfo(
            **payloads.merchant().model_dump(exclude={"business_license_number"}),
            business_license_number="LIC-1",
        ).business_license_number == "LIC-1"


@pytest.mark.unit
class TestSessionPayloadAccess:

    def test_round_trip_through_session(self, payloads):
        session = RegistrationSession(phone_number="+15551234567", role=AccountRole.MERCHANT)
        assert session.get_payload("basic_info") is None
        assert not session.has_payload("basic_info")

        session.set_payload(payloads.basic())

        assert session.has_payload("basic_info")
        basic = session.get_payload("basic_info")
        assert isinstance(basic, BasicInfo)
        assert basic.full_name == "Omar Hassan Ali"
        assert session.updated_at is not None

    def test_corrupt_blob_raises(self):
        session = RegistrationSession(
            phone_number="+15551234567",
            basic_info={"kind": "basic_info", "schema_version": 1, "full_name": "x"},
        )
        with pytest.raises(StagedPayloadCorrupt) as exc_info:
            session.get_payload("basic_info")
        assert exc_info.value.kind == "basic_info"

    def test_unsupported_version_in_store_raises(self, payloads):
        data = payloads.basic().model_dump(mode="json")
        data["schema_version"] = 7
        session = RegistrationSession(phone_number="+15551234567", basic_info=data)
        with pytest.raises(StagedPayloadCorrupt):
            session.get_payload("basic_info")

    def test_payload_stored_under_wrong_column_raises(self, payloads):
        session = RegistrationSession(
            phone_number="+15551234567",
            merchant_info=payloads.basic().model_dump(mode="json"),
        )
        with pytest.raises(StagedPayloadCorrupt):
            session.get_payload("merchant_info")

    def test_unknown_payload_kind(self):
        with pytest.raises(KeyError):
            RegistrationSession(phone_number="+15551234567").get_payload("bank_info")
