"""Atomic finalization of completed registrations."""

import asyncio

import pytest

from order_delivery.auth.password import hash_password, verify_password
from order_delivery.enums import AccountRole, VehicleType
from order_delivery.middleware.exceptions import (
    PhoneAlreadyRegistered,
    RegistrationIncomplete,
    RegistrationNotFound,
    TransientStoreFailure,
)
from order_delivery.models import (
    Account,
    Driver,
    Merchant,
    RegistrationSession,
    Residence,
    Vehicle,
)
from order_delivery.services.finalizer import RegistrationFinalizer, split_full_name

PHONE = "+15551234567"


async def _counts(uow_factory, phone: str = PHONE) -> dict[str, int]:
    async with uow_factory() as uow:
        return {
            "accounts": await uow.repository(Account).count(Account.phone_number == phone),
            "sessions": await uow.repository(RegistrationSession).count(
                RegistrationSession.phone_number == phone
            ),
            "merchants": await uow.repository(Merchant).count(),
            "drivers": await uow.repository(Driver).count(),
        }


@pytest.mark.unit
class TestSplitFullName:

    def test_first_and_rest(self):
        assert split_full_name("Omar Hassan Ali") == ("Omar", "Hassan Ali")

    def test_single_name(self):
        assert split_full_name("Omar") == ("Omar", "")

    def test_empty(self):
        assert split_full_name("   ") == ("", "")


@pytest.mark.integration
@pytest.mark.asyncio
class TestFinalizeMerchant:

    async def test_creates_account_and_merchant_and_deletes_session(
        self, finalizer, complete_merchant, uow_factory
    ):
        await complete_merchant(PHONE)

        account_id = await finalizer.finalize(PHONE)

        assert await _counts(uow_factory) == {
            "accounts": 1, "sessions": 0, "merchants": 1, "drivers": 0,
        }
        async with uow_factory() as uow:
            account = await uow.repository(Account).get_by_id(
                account_id, includes=[Account.merchant]
            )
            assert account.role == AccountRole.MERCHANT
            assert (account.first_name, account.last_name) == ("Omar", "Hassan Ali")
            assert account.national_id_number == "29801011234567"
            assert verify_password("Str0ng!pass", account.hashed_password)
            assert account.merchant.store_name == "Corner Grocery"
            assert account.merchant.account_id == account_id

    async def test_longest_accepted_values_fit_the_columns(
        self, machine, finalizer, start_verified, payloads, uow_factory
    ):
        await start_verified(PHONE, AccountRole.MERCHANT)
        await machine.set_password(PHONE, "Str0ng!pass")
        await machine.set_basic_info(PHONE, payloads.basic(full_name="Omar " + "X" * 95))
        await machine.set_merchant_info(
            PHONE,
            payloads.merchant(store_type="T" * 100, business_license_number="L" * 100),
        )

        account_id = await finalizer.finalize(PHONE)

        async with uow_factory() as uow:
            account = await uow.repository(Account).get_by_id(
                account_id, includes=[Account.merchant]
            )
            columns = Account.__table__.c
            assert len(account.first_name) <= columns.first_name.type.length
            assert len(account.last_name) == 95 <= columns.last_name.type.length
            merchant_columns = Merchant.__table__.c
            assert len(account.merchant.store_type) == merchant_columns.store_type.type.length
            assert (
                len(account.merchant.business_license_number)
                == merchant_columns.business_license_number.type.length
            )

    async def test_missing_password_blocks_finalize(
        self, machine, finalizer, start_verified, payloads, uow_factory
    ):
        await start_verified(PHONE, AccountRole.MERCHANT)
        await machine.set_basic_info(PHONE, payloads.basic())
        await machine.set_merchant_info(PHONE, payloads.merchant())

        with pytest.raises(RegistrationIncomplete) as exc_info:
            await finalizer.finalize(PHONE)

        assert exc_info.value.details == {"missing": ["password"]}
        assert await _counts(uow_factory) == {
            "accounts": 0, "sessions": 1, "merchants": 0, "drivers": 0,
        }


@pytest.mark.integration
@pytest.mark.asyncio
class TestFinalizeDriver:

    async def test_creates_driver_vehicle_and_residence(
        self, finalizer, complete_driver, uow_factory
    ):
        await complete_driver(PHONE)
        account_id = await finalizer.finalize(PHONE)

        assert await _counts(uow_factory) == {
            "accounts": 1, "sessions": 0, "merchants": 0, "drivers": 1,
        }
        async with uow_factory() as uow:
            driver = await uow.repository(Driver).first(
                Driver.account_id == account_id,
                includes=[Driver.vehicle, Driver.residence],
            )
            assert driver.vehicle_type == VehicleType.MOTORCYCLE
            assert driver.vehicle.vehicle_plate_number == "أب123"
            assert driver.vehicle.driver_id == driver.id
            assert driver.residence.district == "Zamalek"
            assert await uow.repository(Vehicle).count() == 1
            assert await uow.repository(Residence).count() == 1


@pytest.mark.integration
@pytest.mark.asyncio
class TestFinalizeRejections:

    async def test_unverified_session_is_incomplete_even_with_all_payloads(
        self, uow, finalizer, payloads, uow_factory
    ):
        session = RegistrationSession(
            phone_number=PHONE,
            role=AccountRole.MERCHANT,
            is_phone_verified=False,
            password_hash=hash_password("Str0ng!pass"),
        )
        session.set_payload(payloads.basic())
        session.set_payload(payloads.merchant())
        await uow.execute_in_transaction(
            lambda: uow.repository(RegistrationSession).add(session)
        )

        with pytest.raises(RegistrationIncomplete) as exc_info:
            await finalizer.finalize(PHONE)

        assert exc_info.value.details == {"missing": ["phone_verification"]}
        assert (await _counts(uow_factory))["sessions"] == 1

    async def test_missing_payloads_are_listed(
        self, machine, finalizer, start_verified, payloads
    ):
        await start_verified(PHONE, AccountRole.DRIVER)
        await machine.set_basic_info(PHONE, payloads.basic())

        with pytest.raises(RegistrationIncomplete) as exc_info:
            await finalizer.finalize(PHONE)
        assert exc_info.value.details["missing"] == [
            "password", "driver_info", "vehicle_info", "residence_info",
        ]

    async def test_unknown_phone(self, finalizer):
        with pytest.raises(RegistrationNotFound):
            await finalizer.finalize(PHONE)

    async def test_second_finalize_reports_existing_account(
        self, finalizer, complete_merchant
    ):
        await complete_merchant(PHONE)
        await finalizer.finalize(PHONE)

        with pytest.raises(PhoneAlreadyRegistered):
            await finalizer.finalize(PHONE)

    async def test_existing_account_blocks_finalize_and_keeps_session(
        self, uow, finalizer, complete_merchant, make_account, uow_factory
    ):
        await complete_merchant(PHONE)
        await uow.execute_in_transaction(
            lambda: uow.repository(Account).add(make_account(PHONE))
        )

        with pytest.raises(PhoneAlreadyRegistered):
            await finalizer.finalize(PHONE)
        assert (await _counts(uow_factory))["sessions"] == 1


@pytest.mark.integration
@pytest.mark.asyncio
class TestAtomicity:

    async def test_failure_after_account_insert_rolls_everything_back(
        self, finalizer, complete_driver, uow_factory, monkeypatch
    ):
        await complete_driver(PHONE)

        async def _broken(uow, session, account_id):
            raise RuntimeError("vehicle store offline")

        monkeypatch.setattr(RegistrationFinalizer, "_create_driver", staticmethod(_broken))

        with pytest.raises(RuntimeError):
            await finalizer.finalize(PHONE)

        assert await _counts(uow_factory) == {
            "accounts": 0, "sessions": 1, "merchants": 0, "drivers": 0,
        }

    async def test_transient_failure_is_retried_once(
        self, finalizer, complete_merchant, uow_factory, monkeypatch
    ):
        await complete_merchant(PHONE)
        original = RegistrationFinalizer._finalize_once
        calls = []

        async def _flaky(self, uow, phone_number):
            calls.append(phone_number)
            if len(calls) == 1:
                raise TransientStoreFailure()
            return await original(self, uow, phone_number)

        monkeypatch.setattr(RegistrationFinalizer, "_finalize_once", _flaky)

        assert await finalizer.finalize(PHONE)
        assert len(calls) == 2
        assert (await _counts(uow_factory))["accounts"] == 1

    async def test_transient_failure_surfaces_after_retry(
        self, finalizer, complete_merchant, uow_factory, monkeypatch
    ):
        await complete_merchant(PHONE)
        calls = []

        async def _always_conflicts(self, uow, phone_number):
            calls.append(phone_number)
            raise TransientStoreFailure()

        monkeypatch.setattr(RegistrationFinalizer, "_finalize_once", _always_conflicts)

        with pytest.raises(TransientStoreFailure):
            await finalizer.finalize(PHONE)
        assert len(calls) == 2
        assert (await _counts(uow_factory))["sessions"] == 1


@pytest.mark.integration
@pytest.mark.slow
@pytest.mark.asyncio
class TestConcurrentFinalize:

    async def test_racing_finalize_creates_one_account(
        self, finalizer, complete_driver, uow_factory
    ):
        await complete_driver(PHONE)

        results = await asyncio.gather(
            finalizer.finalize(PHONE),
            RegistrationFinalizer(uow_factory).finalize(PHONE),
            return_exceptions=True,
        )

        successes = [r for r in results if isinstance(r, str)]
        failures = [r for r in results if isinstance(r, BaseException)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], (PhoneAlreadyRegistered, TransientStoreFailure))

        counts = await _counts(uow_factory)
        assert counts["accounts"] == 1
        assert counts["sessions"] == 0
        assert counts["drivers"] == 1
