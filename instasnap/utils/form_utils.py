"""Validation helpers for login and registration form fields."""

import re

_MOBILE_RE = re.compile(r"^\d{10}$")
_OTP_RE = re.compile(r"^\d{4}$")


def validate_phone_number(mobile: str) -> bool:
    """True for a 10-digit mobile number without country code."""
    return bool(mobile) and _MOBILE_RE.match(mobile) is not None


def validate_otp(otp: str) -> bool:
    return bool(otp) and _OTP_RE.match(otp) is not None


def validate_email(email_id: str) -> bool:
    return bool(email_id) and "@" in email_id


def strip_dial_code(country_code: str) -> str:
    """The backend stores dial codes without the leading ``+``."""
    return country_code.replace("+", "")
