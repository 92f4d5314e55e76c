"""Secret generation, hashing, and shape checks.

Magic link tokens carry 256 bits of CSPRNG output; OTP codes are six
uniformly drawn decimal digits (10^6 possibilities, which is why the
verify rate limit matters for them). Only the SHA-256 digest is stored.
"""

import hashlib
import re
import secrets

from passwordless.services.credential_types import CredentialKind

# 32 random bytes -> 43 URL-safe base64 characters (no padding)
MAGIC_LINK_TOKEN_BYTES = 32
MAGIC_LINK_TOKEN_LENGTH = 43
OTP_LENGTH = 6

# Shared with the request models so malformed secrets fail validation there
MAGIC_LINK_TOKEN_REGEX = rf"^[A-Za-z0-9_-]{{{MAGIC_LINK_TOKEN_LENGTH}}}$"
OTP_REGEX = rf"^[0-9]{{{OTP_LENGTH}}}$"

_MAGIC_LINK_PATTERN = re.compile(MAGIC_LINK_TOKEN_REGEX)
_OTP_PATTERN = re.compile(OTP_REGEX)


def generate_magic_link_token() -> str:
    """Generate a URL-safe magic link token with 256 bits of entropy."""
    return secrets.token_urlsafe(MAGIC_LINK_TOKEN_BYTES)


def generate_otp() -> str:
    """Generate a zero-padded 6-digit OTP from a uniform CSPRNG draw."""
    return str(secrets.randbelow(10**OTP_LENGTH)).zfill(OTP_LENGTH)


def generate_secret(kind: CredentialKind) -> str:
    """Generate a fresh plaintext secret for the given kind."""
    if kind is CredentialKind.MAGIC_LINK:
        return generate_magic_link_token()
    return generate_otp()


def hash_secret(secret: str) -> str:
    """One-way SHA-256 hex digest of a plaintext secret."""
    return hashlib.sha256(secret.encode()).hexdigest()


def is_well_formed(kind: CredentialKind, secret: str) -> bool:
    """Check a submitted secret has the shape its kind produces.

    Args:
        kind: Credential kind the secret is submitted for.
        secret: Submitted plaintext.

    Returns:
        True if the secret could have been issued for this kind.
    """
    pattern = _MAGIC_LINK_PATTERN if kind is CredentialKind.MAGIC_LINK else _OTP_PATTERN
    return pattern.fullmatch(secret) is not None
