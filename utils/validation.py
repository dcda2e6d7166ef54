"""Identifier shape checks shared by the OTP and magic link flows."""

import re

EMAIL_PATTERN = re.compile(r"[^\s@]+@[^\s@]+\.[^\s@]+")
PHONE_PATTERN = re.compile(r"\+?[0-9\s\-\(\)]{10,15}")
OTP_CODE_PATTERN = re.compile(r"[0-9]{6}")


def is_valid_email(value: str | None) -> bool:
    """Loose email shape check (something@domain.tld, no whitespace)."""
    return bool(value) and EMAIL_PATTERN.fullmatch(value) is not None


def is_valid_phone(value: str | None) -> bool:
    """
    Phone number shape check.

    Accepts an optional leading ``+`` followed by 10-15 digits, spaces,
    dashes or parentheses.
    """
    return bool(value) and PHONE_PATTERN.fullmatch(value) is not None


def is_valid_otp_code(value: str | None) -> bool:
    return bool(value) and OTP_CODE_PATTERN.fullmatch(value) is not None


def normalize_email(email: str) -> str:
    return email.lower().strip()
