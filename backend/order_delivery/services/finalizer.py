"""Atomic conversion of a completed staging session into permanent records.

One transaction:
  1. reload the session (row-locked where the backend supports it)
  2. re-check readiness
  3. check the phone is not already an account
  4. create Account, then Merchant or Driver + Vehicle + Residence
  5. delete the session
  6. commit

Anything failing in between rolls the whole thing back and the session
stays as it was. Write conflicts (serialization failure, deadlock, lock
timeout) are retried with a fresh unit of work before they surface as
TransientStoreFailure.
"""

import logging
from typing import Callable

from sqlalchemy.exc import DBAPIError

from order_delivery.config import settings
from order_delivery.enums import AccountRole
from order_delivery.middleware.exceptions import (
    PhoneAlreadyRegistered,
    RegistrationIncomplete,
    RegistrationNotFound,
    TransientStoreFailure,
)
from order_delivery.models.account import Account
from order_delivery.models.driver import Driver, Residence, Vehicle
from order_delivery.models.merchant import Merchant
from order_delivery.models.registration_session import RegistrationSession
from order_delivery.services.accounts import (
    AccountStore,
    DuplicateAccountError,
    PhoneAccountPolicy,
)
from order_delivery.services.registration import missing_requirements
from order_delivery.unit_of_work import UnitOfWork, is_transient_failure

logger = logging.getLogger(__name__)


def split_full_name(full_name: str) -> tuple[str, str]:
    parts = full_name.split(maxsplit=1)
    if not parts:
        return "", ""
    return parts[0], parts[1] if len(parts) > 1 else ""


class RegistrationFinalizer:
    def __init__(
        self,
        uow_factory: Callable[[], UnitOfWork] = UnitOfWork,
        retry_attempts: int = settings.finalize_retry_attempts,
    ):
        self._uow_factory = uow_factory
        self._retry_attempts = retry_attempts

    async def finalize(self, phone_number: str) -> str:
        """Returns the new account id."""
        phone_number = PhoneAccountPolicy.normalize_phone(phone_number)
        attempts = 1 + max(0, self._retry_attempts)

        for attempt in range(1, attempts + 1):
            try:
                async with self._uow_factory() as uow:
                    account_id = await self._finalize_once(uow, phone_number)
            except TransientStoreFailure:
                if attempt == attempts:
                    logger.error("Finalizing %s failed after %d attempt(s)", phone_number, attempt)
                    raise
                logger.warning(
                    "Write conflict finalizing %s (attempt %d), retrying", phone_number, attempt,
                )
                continue

            logger.info("Registration for %s finalized as account %s", phone_number, account_id)
            return account_id

        # attempts is always >= 1
        raise AssertionError("unreachable")

    async def _finalize_once(self, uow: UnitOfWork, phone_number: str) -> str:
        async def _work():
            store = AccountStore(uow)
            sessions = uow.repository(RegistrationSession)

            session = await sessions.first(
                RegistrationSession.phone_number == phone_number,
                refresh=True,
                for_update=True,
            )
            if session is None:
                if await store.find_by_phone(phone_number) is not None:
                    raise PhoneAlreadyRegistered(phone_number)
                raise RegistrationNotFound(phone_number)

            missing = missing_requirements(session)
            if missing:
                raise RegistrationIncomplete(missing)

            if await store.find_by_phone(phone_number) is not None:
                raise PhoneAlreadyRegistered(phone_number)

            basic = session.get_payload("basic_info")
            first_name, last_name = split_full_name(basic.full_name)
            account = Account(
                phone_number=phone_number,
                hashed_password=session.password_hash,
                first_name=first_name,
                last_name=last_name,
                national_id_number=basic.national_id_number,
                personal_photo_url=basic.personal_photo_url,
                national_id_front_photo_url=basic.national_id_front_photo_url,
                national_id_back_photo_url=basic.national_id_back_photo_url,
                role=session.role,
                is_active=True,
            )
            account_id = await store.create(account)

            if session.role == AccountRole.MERCHANT:
                await self._create_merchant(uow, session, account_id)
            else:
                await self._create_driver(uow, session, account_id)

            await sessions.remove(session)
            await uow.save_changes()
            return account_id

        try:
            return await uow.execute_in_transaction(_work)
        except DuplicateAccountError as exc:
            raise PhoneAlreadyRegistered(phone_number) from exc
        except DBAPIError as exc:
            if is_transient_failure(exc):
                raise TransientStoreFailure() from exc
            raise

    @staticmethod
    async def _create_merchant(uow: UnitOfWork, session: RegistrationSession, account_id: str) -> None:
        info = session.get_payload("merchant_info")
        await uow.repository(Merchant).add(
            Merchant(
                account_id=account_id,
                store_name=info.store_name,
                store_type=info.store_type,
                store_address=info.store_address,
                store_latitude=info.store_latitude,
                store_longitude=info.store_longitude,
                business_license_number=info.business_license_number,
            )
        )

    @staticmethod
    async def _create_driver(uow: UnitOfWork, session: RegistrationSession, account_id: str) -> None:
        info = session.get_payload("driver_info")
        vehicle = session.get_payload("vehicle_info")
        residence = session.get_payload("residence_info")

        driver = Driver(
            account_id=account_id,
            vehicle_type=info.vehicle_type,
            is_available=info.is_available,
            current_latitude=info.current_latitude,
            current_longitude=info.current_longitude,
        )
        await uow.repository(Driver).add(driver)
        await uow.save_changes()  # assigns driver.id

        await uow.repository(Vehicle).add(
            Vehicle(
                driver_id=driver.id,
                vehicle_brand=vehicle.vehicle_brand,
                vehicle_plate_number=vehicle.vehicle_plate_number,
                vehicle_issue_year=vehicle.vehicle_issue_year,
                chassis_photo_url=vehicle.chassis_photo_url,
                inspection_photo_url=vehicle.inspection_photo_url,
            )
        )
        await uow.repository(Residence).add(
            Residence(
                driver_id=driver.id,
                province=residence.province,
                city=residence.city,
                district=residence.district,
                street=residence.street,
                building_number=residence.building_number,
                latitude=residence.latitude,
                longitude=residence.longitude,
            )
        )
