"""Registration wizard routes.

Route overview:
  POST /start            → create (or resume) a session and text a code
  POST /resend-code      → text a fresh code for an existing session
  POST /verify-phone     → check the code, mark the phone verified
  POST /password         → stage the password (bcrypt-hashed)
  POST /basic-info       → multipart: name, national ID + 3 photos
  POST /merchant-info    → store details (merchants)
  POST /driver-info      → vehicle type + location (drivers)
  POST /vehicle-info     → multipart: vehicle details + 2 photos (drivers)
  POST /residence-info   → home address (drivers)
  GET  /{phone_number}   → progress of a session
  POST /complete         → finalize into an account, returns tokens

Photos are stored before the step is applied; if the step is rejected
the stored files are deleted again.
"""

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from pydantic import BaseModel, ValidationError

from order_delivery.auth.otp import OtpGate, dev_code, get_otp_gate
from order_delivery.middleware.exceptions import (
    RegistrationNotFound,
    ValidationFailed,
    format_validation_errors,
)
from order_delivery.routers.auth import issue_token_response
from order_delivery.schemas.auth import TokenResponse
from order_delivery.schemas.registration import (
    BasicInfo,
    BasicInfoFields,
    CodeSentResponse,
    DriverInfoRequest,
    MerchantInfoRequest,
    PhoneNumberRequest,
    RegistrationProgress,
    ResidenceInfoRequest,
    SetPasswordRequest,
    StartRegistrationRequest,
    StartRegistrationResponse,
    VehicleInfo,
    VehicleInfoFields,
    VerifyPhoneRequest,
)
from order_delivery.services.accounts import AccountStore, PhoneAccountPolicy
from order_delivery.services.blob_store import BlobStore, get_blob_store
from order_delivery.services.finalizer import RegistrationFinalizer
from order_delivery.services.registration import RegistrationStateMachine, to_progress
from order_delivery.unit_of_work import UnitOfWork, get_unit_of_work, get_uow_factory

router = APIRouter()


# ── Dependencies ─────────────────────────────────────────────

def get_state_machine(
    uow: UnitOfWork = Depends(get_unit_of_work),
    otp_gate: OtpGate = Depends(get_otp_gate),
) -> RegistrationStateMachine:
    return RegistrationStateMachine(uow, otp_gate)


def get_finalizer(uow_factory=Depends(get_uow_factory)) -> RegistrationFinalizer:
    return RegistrationFinalizer(uow_factory)


# ── Helpers ──────────────────────────────────────────────────

def _validated(model: type[BaseModel], **data) -> BaseModel:
    """Build a schema from form fields, reporting failures as VALIDATION_FAILED."""
    try:
        return model(**data)
    except ValidationError as exc:
        raise ValidationFailed(
            "Validation failed",
            details={"errors": format_validation_errors(exc.errors())},
        ) from exc


def _normalized_phone(phone_number: str) -> str:
    return PhoneAccountPolicy.normalize_phone(phone_number)


async def _store_photos(blob_store: BlobStore, photos: dict[str, UploadFile]) -> dict[str, str]:
    """Validate every photo, then store them all. Returns {kind: url}."""
    contents = {}
    for kind, upload in photos.items():
        content = await upload.read()
        blob_store.validate(kind, upload.filename, content)
        contents[kind] = (upload.filename, content)

    urls: dict[str, str] = {}
    try:
        for kind, (filename, content) in contents.items():
            urls[kind] = await blob_store.save(kind, filename, content)
    except BaseException:
        await _discard_photos(blob_store, urls)
        raise
    return urls


async def _discard_photos(blob_store: BlobStore, urls: dict[str, str]) -> None:
    for url in urls.values():
        await blob_store.delete(url)


# ── POST /start ──────────────────────────────────────────────

@router.post("/start", response_model=StartRegistrationResponse)
async def start_registration(
    body: StartRegistrationRequest,
    machine: RegistrationStateMachine = Depends(get_state_machine),
    otp_gate: OtpGate = Depends(get_otp_gate),
):
    """Start a registration for a phone number, or resume the existing one.

    A fresh session gets a verification code by SMS. Resuming does not
    send a code; use /resend-code for that.
    """
    outcome = await machine.start_or_resume(body.phone_number, body.role)
    return StartRegistrationResponse(
        created=outcome.created,
        progress=to_progress(outcome.session),
        dev_code=dev_code(otp_gate, outcome.code),
    )


# ── POST /resend-code ────────────────────────────────────────

@router.post("/resend-code", response_model=CodeSentResponse)
async def resend_code(
    body: PhoneNumberRequest,
    machine: RegistrationStateMachine = Depends(get_state_machine),
    otp_gate: OtpGate = Depends(get_otp_gate),
):
    code = await machine.request_code(body.phone_number)
    return CodeSentResponse(dev_code=dev_code(otp_gate, code))


# ── POST /verify-phone ───────────────────────────────────────

@router.post("/verify-phone", response_model=RegistrationProgress)
async def verify_phone(
    body: VerifyPhoneRequest,
    machine: RegistrationStateMachine = Depends(get_state_machine),
):
    session = await machine.verify_phone(body.phone_number, body.code)
    return to_progress(session)


# ── POST /password ───────────────────────────────────────────

@router.post("/password", response_model=RegistrationProgress)
async def set_password(
    body: SetPasswordRequest,
    machine: RegistrationStateMachine = Depends(get_state_machine),
):
    session = await machine.set_password(body.phone_number, body.password)
    return to_progress(session)


# ── POST /basic-info (multipart) ─────────────────────────────

@router.post("/basic-info", response_model=RegistrationProgress)
async def set_basic_info(
    phone_number: str = Form(...),
    full_name: str = Form(...),
    national_id_number: str = Form(...),
    personal_photo: UploadFile = File(...),
    national_id_front_photo: UploadFile = File(...),
    national_id_back_photo: UploadFile = File(...),
    machine: RegistrationStateMachine = Depends(get_state_machine),
    blob_store: BlobStore = Depends(get_blob_store),
):
    phone_number = _normalized_phone(phone_number)
    fields = _validated(
        BasicInfoFields, full_name=full_name, national_id_number=national_id_number
    )
    urls = await _store_photos(blob_store, {
        "personal_photo": personal_photo,
        "national_id_front_photo": national_id_front_photo,
        "national_id_back_photo": national_id_back_photo,
    })

    try:
        session = await machine.set_basic_info(
            phone_number,
            BasicInfo(
                **fields.model_dump(),
                personal_photo_url=urls["personal_photo"],
                national_id_front_photo_url=urls["national_id_front_photo"],
                national_id_back_photo_url=urls["national_id_back_photo"],
            ),
        )
    except BaseException:
        await _discard_photos(blob_store, urls)
        raise
    return to_progress(session)


# ── POST /merchant-info ──────────────────────────────────────

@router.post("/merchant-info", response_model=RegistrationProgress)
async def set_merchant_info(
    body: MerchantInfoRequest,
    machine: RegistrationStateMachine = Depends(get_state_machine),
):
    session = await machine.set_merchant_info(body.phone_number, body.to_payload())
    return to_progress(session)


# ── POST /driver-info ────────────────────────────────────────

@router.post("/driver-info", response_model=RegistrationProgress)
async def set_driver_info(
    body: DriverInfoRequest,
    machine: RegistrationStateMachine = Depends(get_state_machine),
):
    session = await machine.set_driver_info(body.phone_number, body.to_payload())
    return to_progress(session)


# ── POST /vehicle-info (multipart) ───────────────────────────

@router.post("/vehicle-info", response_model=RegistrationProgress)
async def set_vehicle_info(
    phone_number: str = Form(...),
    vehicle_brand: str = Form(...),
    vehicle_plate_number: str = Form(...),
    vehicle_issue_year: int = Form(...),
    chassis_photo: UploadFile = File(...),
    inspection_photo: UploadFile = File(...),
    machine: RegistrationStateMachine = Depends(get_state_machine),
    blob_store: BlobStore = Depends(get_blob_store),
):
    phone_number = _normalized_phone(phone_number)
    fields = _validated(
        VehicleInfoFields,
        vehicle_brand=vehicle_brand,
        vehicle_plate_number=vehicle_plate_number,
        vehicle_issue_year=vehicle_issue_year,
    )
    urls = await _store_photos(blob_store, {
        "chassis_photo": chassis_photo,
        "inspection_photo": inspection_photo,
    })

    try:
        session = await machine.set_vehicle_info(
            phone_number,
            VehicleInfo(
                **fields.model_dump(),
                chassis_photo_url=urls["chassis_photo"],
                inspection_photo_url=urls["inspection_photo"],
            ),
        )
    except BaseException:
        await _discard_photos(blob_store, urls)
        raise
    return to_progress(session)


# ── POST /residence-info ─────────────────────────────────────

@router.post("/residence-info", response_model=RegistrationProgress)
async def set_residence_info(
    body: ResidenceInfoRequest,
    machine: RegistrationStateMachine = Depends(get_state_machine),
):
    session = await machine.set_residence_info(body.phone_number, body.to_payload())
    return to_progress(session)


# ── GET /{phone_number} ──────────────────────────────────────

@router.get("/{phone_number}", response_model=RegistrationProgress)
async def get_progress(
    phone_number: str,
    machine: RegistrationStateMachine = Depends(get_state_machine),
):
    return await machine.get_progress(phone_number)


# ── POST /complete ───────────────────────────────────────────

@router.post("/complete", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def complete_registration(
    body: PhoneNumberRequest,
    finalizer: RegistrationFinalizer = Depends(get_finalizer),
    uow: UnitOfWork = Depends(get_unit_of_work),
):
    """Turn the completed session into an account and log it in."""
    account_id = await finalizer.finalize(body.phone_number)

    account = await AccountStore(uow).get(account_id)
    if account is None:
        # Committed a moment ago; only a concurrent delete could do this
        raise RegistrationNotFound(body.phone_number)

    return await issue_token_response(account, uow)
