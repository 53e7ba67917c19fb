"""Auth routes for finalized accounts.

Route overview:
  POST /login            → phone + password login (locks after repeated failures)
  POST /refresh          → rotate a refresh token into a new token pair
  POST /logout           → revoke every refresh token of the caller
  GET  /profile          → the caller's account with its merchant/driver profile
  POST /forgot-password  → text a password reset code
  POST /verify-code      → trade the reset code for a reset token
  POST /set-new-password → replace the password using the reset token
"""

from fastapi import APIRouter, Depends

from order_delivery.auth.deps import get_current_account
from order_delivery.auth.otp import OtpGate, dev_code, get_otp_gate
from order_delivery.config import settings
from order_delivery.models.account import Account
from order_delivery.schemas.auth import (
    AccountOut,
    DriverProfile,
    ForgotPasswordRequest,
    ForgotPasswordResponse,
    LoginRequest,
    LogoutResponse,
    MerchantProfile,
    MessageResponse,
    ProfileResponse,
    RefreshRequest,
    ResetTokenResponse,
    SetNewPasswordRequest,
    TokenResponse,
    VerifyResetCodeRequest,
)
from order_delivery.services.accounts import PhoneAccountPolicy
from order_delivery.services.password_reset import PasswordResetFlow
from order_delivery.services.refresh_tokens import RefreshTokenStore
from order_delivery.unit_of_work import UnitOfWork, get_unit_of_work

router = APIRouter()


def _account_out(account: Account) -> AccountOut:
    return AccountOut(
        id=account.id,
        phone_number=account.phone_number,
        first_name=account.first_name,
        last_name=account.last_name,
        role=account.role.value,
        is_active=account.is_active,
    )


async def issue_token_response(account: Account, uow: UnitOfWork) -> TokenResponse:
    """Issue and persist a fresh token pair for `account`."""
    tokens = await RefreshTokenStore(uow).issue(account)
    return TokenResponse(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        account=_account_out(account),
    )


def get_password_reset_flow(
    uow: UnitOfWork = Depends(get_unit_of_work),
    otp_gate: OtpGate = Depends(get_otp_gate),
) -> PasswordResetFlow:
    return PasswordResetFlow(uow, otp_gate)


# ── POST /login ──────────────────────────────────────────────

@router.post("/login", response_model=TokenResponse)
async def login(body: LoginRequest, uow: UnitOfWork = Depends(get_unit_of_work)):
    """Phone + password login."""
    account = await PhoneAccountPolicy(uow).authenticate(body.phone_number, body.password)
    return await issue_token_response(account, uow)


# ── POST /refresh ────────────────────────────────────────────

@router.post("/refresh", response_model=TokenResponse)
async def refresh(body: RefreshRequest, uow: UnitOfWork = Depends(get_unit_of_work)):
    account, tokens = await RefreshTokenStore(uow).rotate(body.refresh_token)
    return TokenResponse(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        account=_account_out(account),
    )


# ── POST /logout ─────────────────────────────────────────────

@router.post("/logout", response_model=LogoutResponse)
async def logout(
    account: Account = Depends(get_current_account),
    uow: UnitOfWork = Depends(get_unit_of_work),
):
    """Sign out everywhere: refresh tokens are revoked, access tokens retired."""
    revoked = await RefreshTokenStore(uow).revoke_all(account.id, "Logout")
    return LogoutResponse(revoked=revoked)


# ── GET /profile ─────────────────────────────────────────────

@router.get("/profile", response_model=ProfileResponse)
async def profile(
    account: Account = Depends(get_current_account),
    uow: UnitOfWork = Depends(get_unit_of_work),
):
    full = await uow.repository(Account).first(
        Account.id == account.id,
        includes=[Account.merchant, Account.driver],
        refresh=True,
    )
    return ProfileResponse(
        **_account_out(full).model_dump(),
        created_at=full.created_at,
        merchant=MerchantProfile.model_validate(full.merchant) if full.merchant else None,
        driver=DriverProfile.model_validate(full.driver) if full.driver else None,
    )


# ── POST /forgot-password ────────────────────────────────────

@router.post("/forgot-password", response_model=ForgotPasswordResponse)
async def forgot_password(
    body: ForgotPasswordRequest,
    flow: PasswordResetFlow = Depends(get_password_reset_flow),
    otp_gate: OtpGate = Depends(get_otp_gate),
):
    code = await flow.request_code(body.phone_number)
    return ForgotPasswordResponse(dev_code=dev_code(otp_gate, code))


# ── POST /verify-code ────────────────────────────────────────

@router.post("/verify-code", response_model=ResetTokenResponse)
async def verify_reset_code(
    body: VerifyResetCodeRequest,
    flow: PasswordResetFlow = Depends(get_password_reset_flow),
):
    reset_token = await flow.verify_code(body.phone_number, body.code)
    return ResetTokenResponse(
        reset_token=reset_token,
        expires_in=settings.reset_token_expire_minutes * 60,
    )


# ── POST /set-new-password ───────────────────────────────────

@router.post("/set-new-password", response_model=MessageResponse)
async def set_new_password(
    body: SetNewPasswordRequest,
    flow: PasswordResetFlow = Depends(get_password_reset_flow),
):
    """Replace the password; signs the account out of every session."""
    await flow.set_new_password(body.reset_token, body.password)
    return MessageResponse(message="Password has been reset. Please log in again.")
