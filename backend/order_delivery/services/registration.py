"""Registration wizard state machine.

Lifecycle of a staging session:

    started -> (phone verified) -> basic_info_set -> role branch -> completed

    Merchant: basic_info_set -> merchant_info_set -> completed
    Driver:   basic_info_set -> driver_info_set -> vehicle_info_set
                             -> residence_info_set -> completed

Phone verification is a gate, not a step: it flips `is_phone_verified`
and leaves `step` alone. The password is staged the same way and is
required before finalizing. Submitting the last step of a role's flow moves
the session to `completed`; `finalize` (see services.finalizer) then turns
it into a permanent account.

Every step submission is checked in this order:
RegistrationNotFound -> RoleMismatch -> StepOutOfOrder -> PhoneNotVerified.
A successful submission overwrites that step's payload and never moves
`step` backwards.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import DBAPIError, IntegrityError

from order_delivery.auth.otp import OtpGate
from order_delivery.auth.password import hash_password
from order_delivery.enums import AccountRole, RegistrationStep
from order_delivery.middleware.exceptions import (
    InvalidOrExpiredCode,
    OtpCooldown,
    PhoneNotVerified,
    RegistrationNotFound,
    RoleConflict,
    RoleMismatch,
    StepOutOfOrder,
    TransientStoreFailure,
)
from order_delivery.models.mixins import utcnow
from order_delivery.models.registration_session import RegistrationSession
from order_delivery.schemas.registration import (
    BasicInfo,
    DriverInfo,
    MerchantInfo,
    RegistrationProgress,
    ResidenceInfo,
    StepPayload,
    VehicleInfo,
)
from order_delivery.services.accounts import PhoneAccountPolicy, is_unique_violation
from order_delivery.unit_of_work import UnitOfWork, is_transient_failure

logger = logging.getLogger(__name__)

S = RegistrationStep

ROLE_FLOWS: dict[AccountRole, tuple[RegistrationStep, ...]] = {
    AccountRole.MERCHANT: (S.BASIC_INFO_SET, S.MERCHANT_INFO_SET),
    AccountRole.DRIVER: (
        S.BASIC_INFO_SET,
        S.DRIVER_INFO_SET,
        S.VEHICLE_INFO_SET,
        S.RESIDENCE_INFO_SET,
    ),
}

STEP_PAYLOAD_KINDS: dict[RegistrationStep, str] = {
    S.BASIC_INFO_SET: "basic_info",
    S.MERCHANT_INFO_SET: "merchant_info",
    S.DRIVER_INFO_SET: "driver_info",
    S.VEHICLE_INFO_SET: "vehicle_info",
    S.RESIDENCE_INFO_SET: "residence_info",
}


# ── Pure helpers ────────────────────────────────────────────

def step_position(role: AccountRole | None, step: RegistrationStep) -> int:
    """Ordinal of `step` within `role`'s lifecycle.

    Positions are role-scoped: the driver's vehicle_info_set and the
    merchant's completed can share an ordinal.
    """
    if step == S.STARTED:
        return 0
    if step == S.PHONE_VERIFIED:
        return 1
    flow = ROLE_FLOWS.get(role, ())
    if step == S.COMPLETED:
        return 2 + len(flow)
    if step in flow:
        return 2 + flow.index(step)
    raise ValueError(f"{step.value} is not part of the {role} flow")


def missing_requirements(session: RegistrationSession) -> list[str]:
    missing = []
    if not session.is_phone_verified:
        missing.append("phone_verification")
    if session.password_hash is None:
        missing.append("password")
    if session.role is None:
        missing.append("role")
        return missing
    for step in ROLE_FLOWS[session.role]:
        kind = STEP_PAYLOAD_KINDS[step]
        if not session.has_payload(kind):
            missing.append(kind)
    return missing


def is_ready_to_finalize(session: RegistrationSession) -> bool:
    return not missing_requirements(session)


def completed_steps(session: RegistrationSession) -> list[RegistrationStep]:
    flow = ROLE_FLOWS.get(session.role, ())
    return [s for s in flow if session.has_payload(STEP_PAYLOAD_KINDS[s])]


def next_step(session: RegistrationSession) -> RegistrationStep | None:
    """What the client should submit next; None once ready to finalize."""
    if not session.is_phone_verified:
        return S.PHONE_VERIFIED
    if session.password_hash is None:
        return S.PASSWORD_SET
    for step in ROLE_FLOWS.get(session.role, ()):
        if not session.has_payload(STEP_PAYLOAD_KINDS[step]):
            return step
    return None


def to_progress(session: RegistrationSession) -> RegistrationProgress:
    return RegistrationProgress(
        phone_number=session.phone_number,
        is_phone_verified=session.is_phone_verified,
        role=session.role,
        step=session.step,
        completed_steps=completed_steps(session),
        next_step=next_step(session),
        has_password=session.password_hash is not None,
        is_ready_to_finalize=is_ready_to_finalize(session),
        created_at=session.created_at,
        updated_at=session.updated_at,
    )


@dataclass
class StartOutcome:
    session: RegistrationSession
    created: bool
    # Only set when a code was just issued for a fresh session
    code: str | None = None


# ── State machine ───────────────────────────────────────────

class RegistrationStateMachine:
    def __init__(self, uow: UnitOfWork, otp_gate: OtpGate):
        self._uow = uow
        self._otp_gate = otp_gate
        self._policy = PhoneAccountPolicy(uow)

    async def start_or_resume(self, phone_number: str, role: AccountRole) -> StartOutcome:
        phone_number = self._policy.normalize_phone(phone_number)

        async def _work():
            await self._policy.ensure_phone_available(phone_number)
            existing = await self._find_session(phone_number)
            if existing is not None:
                return self._check_resume(existing, role), False

            session = RegistrationSession(
                phone_number=phone_number,
                role=role,
                is_phone_verified=False,
                step=S.STARTED,
            )
            await self._uow.repository(RegistrationSession).add(session)
            await self._uow.save_changes()
            return session, True

        try:
            session, created = await self._atomic(_work)
        except IntegrityError as exc:
            if not is_unique_violation(exc):
                raise
            # Another request inserted this phone first
            logger.info("Registration for %s started concurrently, resuming", phone_number)
            session = await self._atomic(
                lambda: self._resume_existing(phone_number, role)
            )
            return StartOutcome(session=session, created=False)

        if not created:
            logger.info("Resuming %s registration for %s", role.value, phone_number)
            return StartOutcome(session=session, created=False)

        logger.info("Started %s registration for %s", role.value, phone_number)
        try:
            code = await self._otp_gate.send(phone_number)
        except OtpCooldown:
            # A code from an earlier session is still live
            return StartOutcome(session=session, created=True)
        except BaseException:
            await self._discard_session(phone_number)
            raise
        return StartOutcome(session=session, created=True, code=code)

    async def request_code(self, phone_number: str) -> str:
        """Send a new verification code for an existing session."""
        phone_number = self._policy.normalize_phone(phone_number)
        await self._atomic(lambda: self._require_session(phone_number))
        return await self._otp_gate.send(phone_number)

    async def verify_phone(self, phone_number: str, code: str) -> RegistrationSession:
        phone_number = self._policy.normalize_phone(phone_number)
        session = await self._atomic(lambda: self._require_session(phone_number))
        if session.is_phone_verified:
            return session

        if not await self._otp_gate.verify(phone_number, code):
            logger.warning("Rejected verification code for %s", phone_number)
            raise InvalidOrExpiredCode()

        async def _mark_verified():
            session = await self._require_session(phone_number, for_update=True)
            session.is_phone_verified = True
            session.updated_at = utcnow()
            self._uow.repository(RegistrationSession).update(session)
            return session

        session = await self._atomic(_mark_verified)
        logger.info("Phone %s verified", phone_number)
        return session

    async def set_password(self, phone_number: str, password: str) -> RegistrationSession:
        phone_number = self._policy.normalize_phone(phone_number)

        async def _work():
            session = await self._require_session(phone_number, for_update=True)
            if not session.is_phone_verified:
                raise PhoneNotVerified()
            session.password_hash = hash_password(password)
            session.updated_at = utcnow()
            self._uow.repository(RegistrationSession).update(session)
            return session

        return await self._atomic(_work)

    async def set_basic_info(self, phone_number: str, payload: BasicInfo) -> RegistrationSession:
        return await self._apply_step(phone_number, S.BASIC_INFO_SET, payload)

    async def set_merchant_info(self, phone_number: str, payload: MerchantInfo) -> RegistrationSession:
        return await self._apply_step(phone_number, S.MERCHANT_INFO_SET, payload)

    async def set_driver_info(self, phone_number: str, payload: DriverInfo) -> RegistrationSession:
        return await self._apply_step(phone_number, S.DRIVER_INFO_SET, payload)

    async def set_vehicle_info(self, phone_number: str, payload: VehicleInfo) -> RegistrationSession:
        return await self._apply_step(phone_number, S.VEHICLE_INFO_SET, payload)

    async def set_residence_info(self, phone_number: str, payload: ResidenceInfo) -> RegistrationSession:
        return await self._apply_step(phone_number, S.RESIDENCE_INFO_SET, payload)

    def is_ready_to_finalize(self, session: RegistrationSession) -> bool:
        return is_ready_to_finalize(session)

    async def get_progress(self, phone_number: str) -> RegistrationProgress:
        phone_number = self._policy.normalize_phone(phone_number)
        session = await self._atomic(lambda: self._require_session(phone_number))
        return to_progress(session)

    async def purge_stale_sessions(self, older_than: datetime) -> int:
        """Delete sessions not touched since `older_than`. Returns the count.

        The age check and the delete are one statement, so a session a
        concurrent step submission just touched is never purged.
        """
        async def _work():
            purged = await self._uow.repository(RegistrationSession).remove_where(
                RegistrationSession.updated_at < older_than
            )
            return [s.phone_number for s in purged]

        phones = await self._atomic(_work)
        for phone in phones:
            self._otp_gate.discard(phone)
        if phones:
            logger.info("Purged %d stale registration session(s)", len(phones))
        return len(phones)

    # ── Helpers ─────────────────────────────────────────────

    async def _apply_step(
        self,
        phone_number: str,
        step: RegistrationStep,
        payload: StepPayload,
    ) -> RegistrationSession:
        if payload.kind != STEP_PAYLOAD_KINDS[step]:
            raise TypeError(f"{step.value} expects a {STEP_PAYLOAD_KINDS[step]} payload")
        phone_number = self._policy.normalize_phone(phone_number)

        async def _work():
            session = await self._require_session(phone_number, for_update=True)

            flow = ROLE_FLOWS.get(session.role)
            if flow is None or step not in flow:
                raise RoleMismatch(step.value, session.role.value if session.role else None)

            index = flow.index(step)
            if index > 0:
                required = flow[index - 1]
                if not session.has_payload(STEP_PAYLOAD_KINDS[required]):
                    raise StepOutOfOrder(step.value, required.value)

            if not session.is_phone_verified:
                raise PhoneNotVerified()

            session.set_payload(payload)
            reached = S.COMPLETED if index == len(flow) - 1 else step
            if step_position(session.role, reached) > step_position(session.role, session.step):
                session.step = reached
            self._uow.repository(RegistrationSession).update(session)
            return session

        session = await self._atomic(_work)
        logger.info("%s: %s stored, step=%s", phone_number, step.value, session.step.value)
        return session

    async def _atomic(self, operation):
        """execute_in_transaction with write conflicts surfaced as TransientStoreFailure."""
        try:
            return await self._uow.execute_in_transaction(operation)
        except DBAPIError as exc:
            if is_transient_failure(exc):
                raise TransientStoreFailure() from exc
            raise

    async def _find_session(
        self, phone_number: str, for_update: bool = False
    ) -> RegistrationSession | None:
        return await self._uow.repository(RegistrationSession).first(
            RegistrationSession.phone_number == phone_number,
            refresh=True,
            for_update=for_update,
        )

    async def _require_session(
        self, phone_number: str, for_update: bool = False
    ) -> RegistrationSession:
        session = await self._find_session(phone_number, for_update=for_update)
        if session is None:
            raise RegistrationNotFound(phone_number)
        return session

    async def _resume_existing(self, phone_number: str, role: AccountRole) -> RegistrationSession:
        return self._check_resume(await self._require_session(phone_number), role)

    @staticmethod
    def _check_resume(session: RegistrationSession, role: AccountRole) -> RegistrationSession:
        if session.role is not None and session.role != role:
            raise RoleConflict(session.role.value, role.value)
        return session

    async def _discard_session(self, phone_number: str) -> None:
        async def _work():
            session = await self._find_session(phone_number, for_update=True)
            if session is not None:
                await self._uow.repository(RegistrationSession).remove(session)

        await self._atomic(_work)
        logger.warning("Discarded registration for %s after failed code delivery", phone_number)
