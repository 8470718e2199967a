"""Database session configuration."""

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from ledgerhook.core.config import settings

# Webhook handlers hold a connection only for the length of one grant or upsert transaction,
# so a small pool covers the processor's concurrent deliveries.
POOL_SIZE = 10
MAX_OVERFLOW = POOL_SIZE


def _engine_kwargs(database_uri: str) -> dict[str, Any]:
    """Pool and connection arguments for the configured backend.

    Postgres gets a bounded pool and kills transactions left idle, so a request that hits its
    processing deadline can never keep a row lock. SQLite (used for local runs) takes defaults.
    """
    if make_url(database_uri).get_backend_name() == "sqlite":
        return {}

    return {
        "pool_size": POOL_SIZE,
        "max_overflow": MAX_OVERFLOW,
        "pool_pre_ping": True,
        "pool_recycle": 300,
        "pool_timeout": 30,
        "isolation_level": "READ COMMITTED",
        "connect_args": {
            "server_settings": {
                "idle_in_transaction_session_timeout": "60000",
            },
            "command_timeout": 60,
        },
    }


async_engine = create_async_engine(
    settings.SQLALCHEMY_ASYNC_DATABASE_URI,
    **_engine_kwargs(settings.SQLALCHEMY_ASYNC_DATABASE_URI),
)

AsyncSessionLocal = async_sessionmaker(
    autocommit=False, autoflush=False, expire_on_commit=False, bind=async_engine
)


@asynccontextmanager
async def get_db_context() -> AsyncGenerator[AsyncSession, None]:
    """Get an async database session that can be used as a context manager.

    Example:
    -------
        async with get_db_context() as db:
            await db.execute(...)

    """
    async with AsyncSessionLocal() as db:
        try:
            yield db
        finally:
            await db.close()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session to be used in dependency injection.

    Yields:
    ------
        AsyncSession: An async database session

    """
    async with AsyncSessionLocal() as db:
        try:
            yield db
        finally:
            await db.close()
