"""Out-of-band delivery of plaintext secrets.

A dispatcher sends one secret to one identifier. Sends must be safe to
retry: the delivery worker may call send() again for the same credential
after a transient failure.
"""

import math
from datetime import datetime
from typing import Protocol

from passwordless.core.clock import Clock, utc_now
from passwordless.core.email import send_magic_link_email
from passwordless.core.sms import build_otp_message, send_sms
from passwordless.services.credential_types import CredentialKind


class NotificationDispatcher(Protocol):
    """Delivers a plaintext secret to its owner."""

    async def send(self, identifier: str, secret: str, expires_at: datetime) -> None:
        """Deliver the secret.

        Raises:
            DeliveryError: If delivery could not be confirmed.
        """
        ...


def _minutes_left(expires_at: datetime, now: datetime) -> int:
    return max(1, math.ceil((expires_at - now).total_seconds() / 60))


class EmailMagicLinkDispatcher:
    """Emails a sign-in link containing the token."""

    def __init__(self, *, clock: Clock = utc_now) -> None:
        self._clock = clock

    async def send(self, identifier: str, secret: str, expires_at: datetime) -> None:
        await send_magic_link_email(
            to_email=identifier,
            token=secret,
            expires_in_minutes=_minutes_left(expires_at, self._clock()),
        )


class SmsOtpDispatcher:
    """Texts the one-time code."""

    def __init__(self, *, clock: Clock = utc_now) -> None:
        self._clock = clock

    async def send(self, identifier: str, secret: str, expires_at: datetime) -> None:
        message = build_otp_message(secret, _minutes_left(expires_at, self._clock()))
        await send_sms(phone_number=identifier, message=message)


def default_dispatchers() -> dict[CredentialKind, NotificationDispatcher]:
    """Production channel per credential kind."""
    return {
        CredentialKind.MAGIC_LINK: EmailMagicLinkDispatcher(),
        CredentialKind.OTP: SmsOtpDispatcher(),
    }
