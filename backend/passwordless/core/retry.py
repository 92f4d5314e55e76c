"""Backoff for out-of-band delivery.

A failed send is retried with doubling delays plus up to 10% random
jitter, capped at max_delay_ms, so a recovering email or SMS gateway is
not hit by every worker at once.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from passwordless.core.errors import DeliveryError

__all__ = ["RetryPolicy", "with_retries"]

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry settings for a delivery attempt.

    Attributes:
        max_retries: Retries after the first attempt (0 = try once).
        base_delay_ms: Delay before the first retry; doubles each retry.
        max_delay_ms: Upper bound for a single delay.
    """

    max_retries: int = 3
    base_delay_ms: int = 500
    max_delay_ms: int = 10_000


async def with_retries(
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    retryable_errors: tuple[type[Exception], ...] = (DeliveryError,),
) -> T:
    """Await func(), retrying on retryable_errors per policy.

    The last error is re-raised once the retries run out; anything not in
    retryable_errors propagates on the first attempt.
    """
    last_error: Exception | None = None

    for attempt in range(policy.max_retries + 1):
        try:
            return await func()
        except retryable_errors as e:
            last_error = e

            if attempt == policy.max_retries:
                break

            base_delay = policy.base_delay_ms * (2**attempt)
            jitter = random.uniform(0, base_delay * 0.1)
            delay = min(base_delay + jitter, policy.max_delay_ms) / 1000

            logger.warning(
                "Delivery error (attempt %d/%d): %s. Retrying in %.2fs",
                attempt + 1,
                policy.max_retries + 1,
                getattr(e, "reason", e),
                delay,
            )

            await asyncio.sleep(delay)

    if last_error is None:
        raise RuntimeError("with_retries finished without an attempt")
    raise last_error
