"""Async database engine and session factory.

Configures the SQLAlchemy async engine with connection pooling. The
credential and rate-limit stores receive the session factory and open
their own transactions (one per unit of work).
"""

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from passwordless.core.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=settings.environment == "development",
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)
