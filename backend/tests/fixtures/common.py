"""Common test fixtures."""

from typing import AsyncGenerator

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from ledgerhook import crud, schemas
from ledgerhook.models import Base


@pytest.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite engine with the billing schema, fresh for each test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Database session with the same settings as the application's sessions."""
    async with AsyncSession(db_engine, autoflush=False, expire_on_commit=False) as session:
        yield session


@pytest.fixture
async def tenant(db_session) -> schemas.Tenant:
    """A tenant that can receive credits."""
    db_obj = await crud.tenant.create(
        db_session, obj_in=schemas.TenantCreate(tenant_id="tenant_acme", name="Acme Dental")
    )
    return schemas.Tenant.model_validate(db_obj)


@pytest.fixture
async def other_tenant(db_session) -> schemas.Tenant:
    """A second tenant, for ownership conflicts."""
    db_obj = await crud.tenant.create(
        db_session, obj_in=schemas.TenantCreate(tenant_id="tenant_globex", name="Globex")
    )
    return schemas.Tenant.model_validate(db_obj)
