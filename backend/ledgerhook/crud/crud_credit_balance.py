"""CRUD operations for credit balances."""

from pydantic import BaseModel
from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerhook.core.datetime_utils import utc_now_naive
from ledgerhook.crud._base import CRUDBase
from ledgerhook.db.unit_of_work import UnitOfWork
from ledgerhook.models import CreditBalance


class CRUDCreditBalance(CRUDBase[CreditBalance, BaseModel, BaseModel]):
    """CRUD operations for credit balances.

    The balance is only changed through ``increment``; it never goes through the ORM
    read-modify-write path, so concurrent grants for one tenant cannot lose an update.
    """

    async def get_credits_available(self, db: AsyncSession, *, tenant_id: str) -> int:
        """Current balance of a tenant; zero when no balance row exists yet."""
        result = await db.execute(
            select(CreditBalance.credits_available).where(CreditBalance.tenant_id == tenant_id)
        )
        return result.scalar_one_or_none() or 0

    async def increment(
        self,
        db: AsyncSession,
        *,
        tenant_id: str,
        amount: int,
        uow: UnitOfWork = None,
    ) -> int:
        """Add credits to a tenant's balance.

        Creates the balance row on first use with ``INSERT ... ON CONFLICT DO NOTHING`` and
        then applies ``credits_available = credits_available + amount`` in the database. The
        update takes the tenant's row lock, which is the only contention point.

        Args:
            db: Database session
            tenant_id: Tenant identifier
            amount: Credits to add, must be positive
            uow: Unit of work for transaction control. If not provided, commits.

        Returns:
            int: The balance after the increment
        """
        if amount <= 0:
            raise ValueError(f"Credit increment must be positive, got {amount}")

        insert = pg_insert if db.get_bind().dialect.name == "postgresql" else sqlite_insert
        await db.execute(
            insert(CreditBalance)
            .values(tenant_id=tenant_id, credits_available=0)
            .on_conflict_do_nothing(index_elements=["tenant_id"])
        )

        await db.execute(
            update(CreditBalance)
            .where(CreditBalance.tenant_id == tenant_id)
            .values(
                credits_available=CreditBalance.credits_available + amount,
                modified_at=utc_now_naive(),
            )
            .execution_options(synchronize_session=False)
        )

        balance = await self.get_credits_available(db, tenant_id=tenant_id)

        if uow is None:
            await db.commit()

        return balance


credit_balance = CRUDCreditBalance(CreditBalance)
