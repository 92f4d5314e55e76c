"""SQLAlchemy ORM models for the passwordless auth service.

All models are exported from this module for convenient imports:
    from passwordless.models import User, Credential, RateLimitCounter

- user.py: User (identity, verification state)
- credential.py: Credential (hashed magic link / OTP secrets)
- rate_limit_counter.py: RateLimitCounter (fixed-window attempt counts)
"""

from passwordless.models.base import Base
from passwordless.models.credential import Credential
from passwordless.models.rate_limit_counter import RateLimitCounter
from passwordless.models.user import User

__all__ = [
    "Base",
    "Credential",
    "RateLimitCounter",
    "User",
]
