"""Reusable field validators for registration input.

Provides validators for:
- Phone numbers (10-15 digits, optional leading +)
- National ID numbers (exactly 14 digits)
- Passwords (length + character classes)
- Vehicle plate numbers and issue years
- Free-text sanitization
"""

import re
from datetime import date


# Regex patterns
PHONE_REGEX = re.compile(r"^\+?\d{10,15}$")
NATIONAL_ID_REGEX = re.compile(r"^\d{14}$")
OTP_CODE_REGEX = re.compile(r"^\d{6}$")
ARABIC_LETTER_REGEX = re.compile(r"[ء-ي]")
PASSWORD_SPECIAL_REGEX = re.compile(r"[!@#$%^&*(),.?\":{}|<>]")

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_BYTES = 72  # bcrypt input limit
MAX_PLATE_LENGTH = 6
MIN_VEHICLE_YEAR = 2000

# XSS patterns
XSS_PATTERNS = [
    r"<script[^>]*>.*?</script>",
    r"javascript:",
    r"on\w+\s*=",
    r"<iframe",
]


def sanitize_string(value: str, max_length: int = 255) -> str:
    """Trim, length-check and reject markup in a free-text field.

    Raises:
        ValueError: If validation fails
    """
    if not isinstance(value, str):
        raise ValueError("Must be a string")

    value = value.strip()
    if not value:
        raise ValueError("Value is required")

    if len(value) > max_length:
        raise ValueError(f"String too long (max {max_length} characters)")

    for pattern in XSS_PATTERNS:
        if re.search(pattern, value, re.IGNORECASE):
            raise ValueError("Invalid characters detected")

    return value


def validate_phone(value: str) -> str:
    """Validate phone number.

    Spaces and dashes are stripped before matching, so
    "+1 555-123-4567" normalizes to "+15551234567".

    Raises:
        ValueError: If phone number is invalid
    """
    if not value:
        raise ValueError("Phone number is required")

    value = value.replace(" ", "").replace("-", "")

    if not PHONE_REGEX.match(value):
        raise ValueError(
            "Invalid phone number format (10-15 digits with optional + prefix)"
        )

    return value


def validate_otp_code(value: str) -> str:
    value = (value or "").strip()
    if not OTP_CODE_REGEX.match(value):
        raise ValueError("Verification code must be 6 digits")
    return value


def validate_national_id(value: str) -> str:
    value = (value or "").strip()
    if not value.isdigit():
        raise ValueError("National ID number must be numeric")
    if not NATIONAL_ID_REGEX.match(value):
        raise ValueError("National ID number must be exactly 14 digits")
    return value


def validate_password_strength(value: str) -> str:
    """Enforce the account password policy.

    At least 8 characters with one uppercase letter, one lowercase
    letter, one digit and one special character.
    """
    if not value:
        raise ValueError("Password is required")
    if len(value) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
    if not re.search(r"[A-Z]", value):
        raise ValueError("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", value):
        raise ValueError("Password must contain at least one lowercase letter")
    if not re.search(r"[0-9]", value):
        raise ValueError("Password must contain at least one digit")
    if not PASSWORD_SPECIAL_REGEX.search(value):
        raise ValueError("Password must contain at least one special character")
    return value


def validate_plate_number(value: str) -> str:
    """Plate numbers mix Arabic letters and digits, max 6 characters."""
    value = "".join((value or "").split())
    if not value:
        raise ValueError("Vehicle plate number is required")
    if not ARABIC_LETTER_REGEX.search(value):
        raise ValueError("The vehicle plate number must contain at least one Arabic letter")
    if not re.search(r"[0-9]", value):
        raise ValueError("The vehicle plate number must contain at least one digit")
    if len(value) > MAX_PLATE_LENGTH:
        raise ValueError(
            f"The total number of letters and digits must not exceed {MAX_PLATE_LENGTH}"
        )
    return value


def validate_vehicle_year(value: int) -> int:
    current_year = date.today().year
    if not MIN_VEHICLE_YEAR <= value <= current_year:
        raise ValueError(
            f"Invalid year. The year must be between {MIN_VEHICLE_YEAR} and {current_year}"
        )
    return value
