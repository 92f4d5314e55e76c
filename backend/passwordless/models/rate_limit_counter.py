"""Rate limit counter model - fixed-window attempt counts.

Ephemeral rows keyed by ``action:identifier``. A row whose window has
closed is reset by the next hit and removed by the maintenance sweep.
"""

from datetime import datetime

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from passwordless.models.base import Base


class RateLimitCounter(Base):
    """Attempt counter for one rate-limit key.

    Attributes:
        key: ``action:identifier`` (e.g. ``otp-verify:+15551234567``).
        count: Hits in the current window, capped at max_attempts + 1.
        window_start: When the current window opened (first hit).
        expires_at: When the current window closes.
    """

    __tablename__ = "rate_limit_counters"

    key: Mapped[str] = mapped_column(String(320), primary_key=True)
    count: Mapped[int] = mapped_column(Integer, nullable=False)
    window_start: Mapped[datetime] = mapped_column(nullable=False)
    expires_at: Mapped[datetime] = mapped_column(nullable=False, index=True)
