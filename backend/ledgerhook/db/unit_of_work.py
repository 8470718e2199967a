"""Unit of work: one database transaction spanning several CRUD calls."""

from types import TracebackType
from typing import Optional, Type

from sqlalchemy.ext.asyncio import AsyncSession


class UnitOfWork:
    """Groups CRUD operations into a single all-or-nothing transaction.

    CRUD methods that receive a ``uow`` skip their own commit. Leaving the block commits
    everything at once; an exception inside the block rolls everything back.

    Example:
    -------
        async with UnitOfWork(db) as uow:
            await crud.credit_grant.create(db, obj_in=grant_in, uow=uow)
            await crud.credit_balance.increment(db, tenant_id=tenant_id, amount=amount, uow=uow)

    """

    def __init__(self, session: AsyncSession):
        """Initialize the unit of work with the session that carries the transaction."""
        self.session = session
        self._committed = False

    async def __aenter__(self) -> "UnitOfWork":
        """Enter the transaction block."""
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_value: Optional[BaseException],
        traceback: Optional[TracebackType],
    ) -> None:
        """Commit on success, roll back on any exception (including cancellation)."""
        if exc_type is not None:
            await self.rollback()
            return

        if not self._committed:
            await self.commit()

    async def commit(self) -> None:
        """Commit the transaction."""
        await self.session.commit()
        self._committed = True

    async def rollback(self) -> None:
        """Roll back the transaction."""
        await self.session.rollback()
