"""Domain exceptions and the handlers that turn them into JSON errors.

Every error leaves the API in one envelope:

    {
        "error": {
            "code": "STEP_OUT_OF_ORDER",
            "message": "Human-readable error message",
            "details": {...}  // Optional
        }
    }

Domain errors are logged at WARNING; anything unexpected is logged with
its traceback and answered with a generic 500.
"""

import logging
from typing import Union

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class OrderDeliveryException(Exception):
    """Base exception for registration and account errors."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str = "INTERNAL_ERROR",
        details: Union[dict, list, None] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details
        super().__init__(self.message)


# ── Registration wizard ─────────────────────────────────────

class ValidationFailed(OrderDeliveryException):
    def __init__(self, message: str, details: Union[dict, list, None] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="VALIDATION_FAILED",
            details=details,
        )


class StepOutOfOrder(OrderDeliveryException):
    def __init__(self, step: str, requires: str):
        super().__init__(
            message=f"Cannot submit {step} before {requires}",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="STEP_OUT_OF_ORDER",
            details={"step": step, "requires": requires},
        )


class RoleMismatch(OrderDeliveryException):
    """A step that does not belong to the session's role."""

    def __init__(self, step: str, role: str | None):
        super().__init__(
            message=f"Step {step} is not part of the {role or 'unassigned'} registration",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="ROLE_MISMATCH",
        )


class RoleConflict(OrderDeliveryException):
    """Resuming a session with a different role than it was started with."""

    def __init__(self, existing_role: str, requested_role: str):
        super().__init__(
            message=(
                f"Registration already started as {existing_role}, "
                f"cannot continue as {requested_role}"
            ),
            status_code=status.HTTP_409_CONFLICT,
            error_code="ROLE_CONFLICT",
        )


class PhoneNotVerified(OrderDeliveryException):
    def __init__(self, message: str = "Phone number has not been verified"):
        super().__init__(
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            error_code="PHONE_NOT_VERIFIED",
        )


class InvalidOrExpiredCode(OrderDeliveryException):
    def __init__(self, message: str = "Invalid or expired verification code"):
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="INVALID_OR_EXPIRED_CODE",
        )


class RegistrationNotFound(OrderDeliveryException):
    def __init__(self, phone_number: str):
        super().__init__(
            message=f"No registration in progress for {phone_number}",
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="REGISTRATION_NOT_FOUND",
        )


class RegistrationIncomplete(OrderDeliveryException):
    def __init__(self, missing: list[str]):
        super().__init__(
            message="Registration is not ready to be completed",
            status_code=status.HTTP_409_CONFLICT,
            error_code="REGISTRATION_INCOMPLETE",
            details={"missing": missing},
        )


class PhoneAlreadyRegistered(OrderDeliveryException):
    def __init__(self, phone_number: str):
        super().__init__(
            message=f"An account already exists for {phone_number}",
            status_code=status.HTTP_409_CONFLICT,
            error_code="PHONE_ALREADY_REGISTERED",
        )


class TransientStoreFailure(OrderDeliveryException):
    def __init__(self, message: str = "The store is busy. Please try again."):
        super().__init__(
            message=message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_code="TRANSIENT_STORE_FAILURE",
        )


# ── OTP ─────────────────────────────────────────────────────

class OtpDeliveryFailed(OrderDeliveryException):
    def __init__(self, message: str = "Could not deliver the verification code"):
        super().__init__(
            message=message,
            status_code=status.HTTP_502_BAD_GATEWAY,
            error_code="OTP_DELIVERY_FAILED",
        )


class OtpCooldown(OrderDeliveryException):
    def __init__(self, retry_after: int):
        self.retry_after = retry_after
        super().__init__(
            message=f"Wait {retry_after}s before requesting another code",
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            error_code="OTP_COOLDOWN",
            details={"retry_after": retry_after},
        )


# ── Login & password reset ──────────────────────────────────

class InvalidCredentials(OrderDeliveryException):
    def __init__(self, message: str = "Invalid credentials"):
        super().__init__(
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED,
            error_code="INVALID_CREDENTIALS",
        )


class AccountLocked(OrderDeliveryException):
    def __init__(self, retry_after: int):
        super().__init__(
            message="Account temporarily locked after repeated failed logins",
            status_code=status.HTTP_423_LOCKED,
            error_code="ACCOUNT_LOCKED",
            details={"retry_after": retry_after},
        )


class InvalidResetToken(OrderDeliveryException):
    def __init__(self, message: str = "Invalid or expired reset token"):
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="INVALID_RESET_TOKEN",
        )


# ── Response helpers & handlers ─────────────────────────────

def format_validation_errors(errors: list[dict]) -> list[dict]:
    """Flatten pydantic errors into JSON-safe {field, message, type} entries."""
    return [
        {
            "field": " -> ".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in errors
    ]


def create_error_response(
    status_code: int,
    message: str,
    error_code: str = "ERROR",
    details: Union[dict, list, None] = None,
    headers: dict | None = None,
) -> JSONResponse:
    content = {
        "error": {
            "code": error_code,
            "message": message,
        }
    }
    if details:
        content["error"]["details"] = details

    return JSONResponse(status_code=status_code, content=content, headers=headers)


async def order_delivery_exception_handler(
    request: Request,
    exc: OrderDeliveryException,
) -> JSONResponse:
    logger.warning(
        "%s on %s %s: %s",
        exc.error_code, request.method, request.url.path, exc.message,
    )
    headers = None
    if isinstance(exc, OtpCooldown):
        headers = {"Retry-After": str(exc.retry_after)}

    return create_error_response(
        status_code=exc.status_code,
        message=exc.message,
        error_code=exc.error_code,
        details=exc.details,
        headers=headers,
    )


async def http_exception_handler(
    request: Request,
    exc: Union[HTTPException, StarletteHTTPException],
) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("HTTP %s on %s: %s", exc.status_code, request.url.path, exc.detail)

    return create_error_response(
        status_code=exc.status_code,
        message=str(exc.detail),
        error_code=f"HTTP_{exc.status_code}",
    )


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Request bodies that fail their schema are a VALIDATION_FAILED."""
    errors = format_validation_errors(exc.errors())
    logger.warning("Validation failed on %s: %d error(s)", request.url.path, len(errors))

    return create_error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        message="Validation failed",
        error_code="VALIDATION_FAILED",
        details={"errors": errors},
    )


async def integrity_exception_handler(
    request: Request,
    exc: IntegrityError,
) -> JSONResponse:
    """Constraint violations that escaped the services."""
    logger.error("Integrity error on %s: %s", request.url.path, exc.orig)

    return create_error_response(
        status_code=status.HTTP_409_CONFLICT,
        message="A record with this value already exists",
        error_code="DUPLICATE_RECORD",
    )


async def operational_exception_handler(
    request: Request,
    exc: OperationalError,
) -> JSONResponse:
    logger.error("Database operational error on %s: %s", request.url.path, exc)

    return create_error_response(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        message="Database temporarily unavailable. Please try again.",
        error_code="DATABASE_UNAVAILABLE",
    )


async def general_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    logger.error(
        "Unhandled exception on %s %s", request.method, request.url.path, exc_info=exc,
    )

    return create_error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        message="An unexpected error occurred. Please try again later.",
        error_code="INTERNAL_SERVER_ERROR",
    )


def register_exception_handlers(app):
    app.add_exception_handler(OrderDeliveryException, order_delivery_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(IntegrityError, integrity_exception_handler)
    app.add_exception_handler(OperationalError, operational_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
