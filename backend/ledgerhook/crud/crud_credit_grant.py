"""CRUD operations for credit grants."""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerhook import schemas
from ledgerhook.crud._base import CRUDBase
from ledgerhook.models import CreditGrant


class CRUDCreditGrant(
    CRUDBase[CreditGrant, schemas.CreditGrantCreate, schemas.CreditGrantCreate]
):
    """CRUD operations for credit grants.

    Grants are append-only: the credit granter inserts them and nothing updates or removes
    them.
    """

    async def get_by_key(self, db: AsyncSession, *, grant_key: str) -> Optional[CreditGrant]:
        """Get a grant by its grant key.

        Args:
            db: Database session
            grant_key: Grant key

        Returns:
            CreditGrant or None
        """
        result = await db.execute(select(CreditGrant).where(CreditGrant.grant_key == grant_key))
        return result.scalar_one_or_none()

    async def get_all_for_tenant(self, db: AsyncSession, *, tenant_id: str) -> list[CreditGrant]:
        """Get every grant applied to a tenant, oldest first."""
        query = (
            select(CreditGrant)
            .where(CreditGrant.tenant_id == tenant_id)
            .order_by(CreditGrant.created_at)
        )
        result = await db.execute(query)
        return list(result.scalars().all())


credit_grant = CRUDCreditGrant(CreditGrant)
