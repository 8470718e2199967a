"""CRUD operations for subscriptions."""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerhook import schemas
from ledgerhook.crud._base import CRUDBase
from ledgerhook.models import Subscription


class CRUDSubscription(
    CRUDBase[Subscription, schemas.SubscriptionCreate, schemas.SubscriptionUpdate]
):
    """CRUD operations for subscriptions."""

    async def get_by_subscription_id(
        self, db: AsyncSession, *, subscription_id: str, for_update: bool = False
    ) -> Optional[Subscription]:
        """Get a subscription by its Stripe subscription id.

        Args:
            db: Database session
            subscription_id: Stripe subscription id
            for_update: Lock the row until the current transaction ends

        Returns:
            Subscription or None
        """
        query = select(Subscription).where(Subscription.subscription_id == subscription_id)
        if for_update:
            query = query.with_for_update()
        result = await db.execute(query)
        return result.scalar_one_or_none()

    async def get_all_for_tenant(self, db: AsyncSession, *, tenant_id: str) -> list[Subscription]:
        """Get every subscription of a tenant, canceled ones included."""
        query = (
            select(Subscription)
            .where(Subscription.tenant_id == tenant_id)
            .order_by(Subscription.created_at)
        )
        result = await db.execute(query)
        return list(result.scalars().all())


subscription = CRUDSubscription(Subscription)
