"""Time source for the credential engine.

Services take a ``Clock`` so tests can pin and advance time instead of
sleeping across expiry and rate-limit windows.
"""

from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return the current timezone-aware UTC time."""
    return datetime.now(UTC)
