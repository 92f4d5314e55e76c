"""Identifier normalization.

Users are keyed by a single identifier: a lowercase email address for the
magic-link flow, or an E.164 phone number for the OTP flow. Both request
models and services normalize through these helpers so the same person
always maps to the same row and rate-limit key.
"""

import re

from passwordless.core.errors import ValidationError

_E164_PATTERN = re.compile(r"\+[1-9][0-9]{7,14}")
_PHONE_SEPARATORS = re.compile(r"[\s().-]")


def normalize_email(email: str) -> str:
    """Trim and lowercase an email address.

    Shape validation happens in the request model (EmailStr).
    """
    return email.strip().lower()


def normalize_phone(phone: str) -> str:
    """Normalize a phone number to E.164.

    Accepts E.164 input with common separators, and bare North American
    numbers (10 digits, or 11 digits starting with 1).

    Args:
        phone: Raw phone number from the request.

    Returns:
        E.164 phone number, e.g. "+15551234567".

    Raises:
        ValidationError: If the number cannot be normalized.
    """
    cleaned = _PHONE_SEPARATORS.sub("", phone.strip())

    if cleaned.isascii() and cleaned.isdigit():
        if len(cleaned) == 10:
            cleaned = f"+1{cleaned}"
        elif len(cleaned) == 11 and cleaned.startswith("1"):
            cleaned = f"+{cleaned}"

    if not _E164_PATTERN.fullmatch(cleaned):
        raise ValidationError("Invalid phone number format")
    return cleaned
