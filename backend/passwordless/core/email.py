"""Email sending via Resend API.

Plain-text magic link emails sent with a single HTTP POST. Failures raise
DeliveryError so the delivery worker can retry, and finally invalidate the
credential if the email never goes out.
"""

import logging
from urllib.parse import quote, urlencode

import httpx

from passwordless.core.config import settings
from passwordless.core.errors import DeliveryError

logger = logging.getLogger(__name__)

_RESEND_API_URL = "https://api.resend.com/emails"
_RESEND_TIMEOUT = 10.0


def build_verify_url(*, identifier: str, token: str) -> str:
    """Build the link the user clicks.

    The link points at the backend directly: it verifies the token, sets
    the session cookie, and redirects to the frontend.
    """
    params = urlencode({"identifier": identifier, "token": token}, quote_via=quote)
    return f"{settings.backend_url}/api/v1/auth/magic-link/verify?{params}"


async def send_magic_link_email(
    *, to_email: str, token: str, expires_in_minutes: int
) -> None:
    """Send a magic link sign-in email via Resend.

    Args:
        to_email: Recipient email address.
        token: Plain (unhashed) magic link token.
        expires_in_minutes: Lifetime shown in the email body.

    Raises:
        DeliveryError: If Resend rejects the request or cannot be reached,
            or if no API key is configured in production.
    """
    api_key = settings.resend_api_key.get_secret_value()
    if not api_key:
        if settings.environment == "production":
            raise DeliveryError("Resend provider not configured")
        # Local development without a provider account
        logger.warning("RESEND_API_KEY not set; magic link email to %s not sent", to_email)
        return

    verify_url = build_verify_url(identifier=to_email, token=token)
    product = settings.email_product_name

    try:
        async with httpx.AsyncClient() as client:
            resp = await client.post(
                _RESEND_API_URL,
                headers={"Authorization": f"Bearer {api_key}"},
                json={
                    "from": settings.email_from,
                    "to": to_email,
                    "subject": f"Your sign-in link for {product}",
                    "text": (
                        f"Click this link to sign in:\n\n{verify_url}\n\n"
                        f"This link expires in {expires_in_minutes} minutes. "
                        "If you didn't request this, you can safely ignore this email."
                    ),
                },
                timeout=_RESEND_TIMEOUT,
            )
            resp.raise_for_status()
    except httpx.HTTPStatusError as exc:
        raise DeliveryError(
            f"Resend returned HTTP {exc.response.status_code}"
        ) from exc
    except httpx.HTTPError as exc:
        raise DeliveryError(f"Resend request failed: {type(exc).__name__}") from exc
