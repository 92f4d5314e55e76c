"""SMS sending via an HTTP gateway.

The gateway accepts a JSON POST with account credentials, sender id,
recipient and text, and answers ``{"status": "success", "message_id": ...}``.
Anything else is a delivery failure.
"""

import logging

import httpx

from passwordless.core.config import settings
from passwordless.core.errors import DeliveryError

logger = logging.getLogger(__name__)

_SMS_TIMEOUT = 30.0


def build_otp_message(otp: str, expires_in_minutes: int) -> str:
    """Text of the verification SMS."""
    return (
        f"Your verification code is: {otp}. "
        f"This code will expire in {expires_in_minutes} minutes. "
        "Do not share this code with anyone."
    )


async def send_sms(*, phone_number: str, message: str) -> str | None:
    """Send a text message through the configured gateway.

    Args:
        phone_number: Recipient in E.164 format.
        message: Message text.

    Returns:
        Gateway message id, if the gateway returned one.

    Raises:
        DeliveryError: If the gateway is unreachable or reports failure,
            or if no account is configured in production.
    """
    if not settings.sms_username:
        if settings.environment == "production":
            raise DeliveryError("SMS gateway not configured")
        # Local development without a gateway account
        logger.warning("SMS_USERNAME not set; SMS to %s not sent", phone_number)
        return None

    try:
        async with httpx.AsyncClient() as client:
            resp = await client.post(
                settings.sms_gateway_url,
                json={
                    "username": settings.sms_username,
                    "password": settings.sms_password.get_secret_value(),
                    "sender": settings.sms_sender_id,
                    "recipient": phone_number,
                    "message": message,
                    "type": "text",
                },
                timeout=_SMS_TIMEOUT,
            )
            resp.raise_for_status()
            data = resp.json()
    except httpx.HTTPStatusError as exc:
        raise DeliveryError(
            f"SMS gateway returned HTTP {exc.response.status_code}"
        ) from exc
    except httpx.HTTPError as exc:
        raise DeliveryError(f"SMS gateway request failed: {type(exc).__name__}") from exc
    except ValueError as exc:
        raise DeliveryError("SMS gateway returned a non-JSON body") from exc

    if not isinstance(data, dict) or data.get("status") != "success":
        raise DeliveryError("SMS gateway reported failure")

    message_id = data.get("message_id")
    logger.info("SMS sent to %s (message_id=%s)", phone_number, message_id)
    return message_id
