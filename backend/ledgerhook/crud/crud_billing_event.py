"""CRUD operations for the billing event audit log."""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerhook import schemas
from ledgerhook.crud._base import CRUDBase
from ledgerhook.models import BillingEventLog


class CRUDBillingEvent(
    CRUDBase[BillingEventLog, schemas.BillingEventLogCreate, schemas.BillingEventLogCreate]
):
    """CRUD operations for the billing event audit log."""

    async def get_by_stripe_event_id(
        self, db: AsyncSession, *, stripe_event_id: str
    ) -> Optional[BillingEventLog]:
        """Get the audit entry of an event.

        Args:
            db: Database session
            stripe_event_id: Stripe event id

        Returns:
            BillingEventLog or None
        """
        query = (
            select(BillingEventLog)
            .where(BillingEventLog.stripe_event_id == stripe_event_id)
            .execution_options(populate_existing=True)
        )
        result = await db.execute(query)
        return result.scalar_one_or_none()

    async def record(
        self, db: AsyncSession, *, obj_in: schemas.BillingEventLogCreate
    ) -> BillingEventLog:
        """Record the latest outcome of an event and count the delivery.

        The first delivery inserts the entry; redeliveries overwrite outcome and detail and
        bump ``delivery_count``. Commits.
        """
        existing = await self.get_by_stripe_event_id(db, stripe_event_id=obj_in.stripe_event_id)
        if existing is None:
            try:
                return await self.create(db, obj_in=obj_in)
            except IntegrityError:
                # A concurrent delivery of the same event inserted first
                await db.rollback()
                existing = await self.get_by_stripe_event_id(
                    db, stripe_event_id=obj_in.stripe_event_id
                )
                if existing is None:
                    raise

        updates = obj_in.model_dump(exclude={"stripe_event_id"})
        if updates.get("tenant_id") is None:
            updates.pop("tenant_id")
        updates["delivery_count"] = existing.delivery_count + 1
        return await self.update(db, db_obj=existing, obj_in=updates)


billing_event = CRUDBillingEvent(BillingEventLog)
