"""Subscription ledger.

Durable side of the subscription state machine: loads the row under a lock, asks
``plan_subscription_change`` what to write and writes it in one transaction.
"""

from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerhook import crud, schemas
from ledgerhook.billing.grant_translation import (
    metadata_credit_amount,
    metadata_plan_id,
    metadata_tenant_id,
)
from ledgerhook.billing.subscription_logic import (
    StoredSubscription,
    SubscriptionChange,
    SubscriptionEventContext,
    plan_subscription_change,
)
from ledgerhook.core.datetime_utils import to_naive_utc, utc_now_naive
from ledgerhook.core.exceptions import (
    InvariantViolation,
    NotFoundException,
    TransientStorageError,
)
from ledgerhook.core.logging import logger
from ledgerhook.db.unit_of_work import UnitOfWork
from ledgerhook.models import Subscription
from ledgerhook.schemas.billing_event import BillingEvent, SubscriptionPayload

# A concurrent first insert of the same subscription is retried once against the winner's row
INSERT_ATTEMPTS = 2

ledger_logger = logger.with_prefix("Subscription ledger: ")


@dataclass
class SubscriptionLedgerResult:
    """A subscription after an event was applied to it."""

    subscription: schemas.Subscription
    change: SubscriptionChange
    created: bool


class SubscriptionLedger:
    """Stores subscriptions and applies processor events to them."""

    async def get(
        self, db: AsyncSession, *, subscription_id: str
    ) -> Optional[schemas.Subscription]:
        """Current state of a subscription, if it is known."""
        row = await crud.subscription.get_by_subscription_id(db, subscription_id=subscription_id)
        return schemas.Subscription.model_validate(row) if row else None

    async def register_pending_subscription(
        self,
        db: AsyncSession,
        *,
        subscription_id: str,
        tenant_id: str,
        plan_id: Optional[str] = None,
        credit_amount: Optional[int] = None,
    ) -> schemas.Subscription:
        """Record a subscription at checkout creation, before any event arrives.

        Tenant, plan and credit amount stored here take precedence over whatever the
        processor echoes back in event metadata. Registering the same subscription again with
        the same values is a no-op; missing values are filled in.

        Raises:
            NotFoundException: If the tenant does not exist
            InvariantViolation: If the subscription is already stored with other values
            TransientStorageError: If the database is unavailable
        """
        if credit_amount is not None and credit_amount <= 0:
            raise ValueError(f"Credit amount must be positive, got {credit_amount}")

        if not await crud.tenant.exists(db, tenant_id=tenant_id):
            raise NotFoundException(f"Tenant {tenant_id} not found")

        for attempt in range(INSERT_ATTEMPTS):
            try:
                async with UnitOfWork(db) as uow:
                    row = await crud.subscription.get_by_subscription_id(
                        db, subscription_id=subscription_id, for_update=True
                    )
                    if row is None:
                        row = await crud.subscription.create(
                            db,
                            obj_in=schemas.SubscriptionCreate(
                                subscription_id=subscription_id,
                                tenant_id=tenant_id,
                                plan_id=plan_id,
                                credit_amount=credit_amount,
                            ),
                            uow=uow,
                        )
                    else:
                        updates = self._registration_updates(
                            row, tenant_id=tenant_id, plan_id=plan_id, credit_amount=credit_amount
                        )
                        if updates:
                            await crud.subscription.update(db, db_obj=row, obj_in=updates, uow=uow)
                    result = schemas.Subscription.model_validate(row)
                return result
            except IntegrityError as e:
                await db.rollback()
                if attempt == INSERT_ATTEMPTS - 1:
                    raise TransientStorageError(f"Could not register {subscription_id}: {e}") from e
            except DBAPIError as e:
                await db.rollback()
                raise TransientStorageError(f"Could not register {subscription_id}: {e}") from e

    @staticmethod
    def _registration_updates(
        row: Subscription,
        *,
        tenant_id: str,
        plan_id: Optional[str],
        credit_amount: Optional[int],
    ) -> dict[str, Any]:
        """Fields a repeated registration fills in; conflicting values are refused."""
        if row.tenant_id != tenant_id:
            raise InvariantViolation(
                f"Subscription {row.subscription_id} belongs to tenant {row.tenant_id}"
            )

        updates: dict[str, Any] = {}
        for field_name, value in (("plan_id", plan_id), ("credit_amount", credit_amount)):
            if value is None:
                continue
            stored = getattr(row, field_name)
            if stored is None:
                updates[field_name] = value
            elif stored != value:
                raise InvariantViolation(
                    f"Subscription {row.subscription_id} is registered with "
                    f"{field_name}={stored!r}, not {value!r}"
                )
        return updates

    async def apply_subscription_event(
        self, db: AsyncSession, event: BillingEvent
    ) -> SubscriptionLedgerResult:
        """Apply a ``customer.subscription.*`` event.

        The row is created if it does not exist yet, whichever event type arrives first.

        Raises:
            InvariantViolation: If the tenant cannot be resolved or contradicts the stored one
            TransientStorageError: If the database is unavailable
        """
        payload = SubscriptionPayload.model_validate(event.payload)

        for attempt in range(INSERT_ATTEMPTS):
            try:
                return await self._apply_once(db, event, payload)
            except IntegrityError as e:
                await db.rollback()
                if attempt == INSERT_ATTEMPTS - 1:
                    raise TransientStorageError(
                        f"Could not store subscription {payload.id}: {e}"
                    ) from e
                ledger_logger.info(f"Subscription {payload.id} was inserted concurrently, retrying")
            except DBAPIError as e:
                await db.rollback()
                raise TransientStorageError(
                    f"Could not store subscription {payload.id}: {e}"
                ) from e

    async def _apply_once(
        self, db: AsyncSession, event: BillingEvent, payload: SubscriptionPayload
    ) -> SubscriptionLedgerResult:
        """Load, decide and write in one transaction."""
        context = SubscriptionEventContext(
            event_type=event.event_type,
            occurred_at=to_naive_utc(event.occurred_at),
            processor_status=payload.status,
            now=utc_now_naive(),
            current_period_start=payload.period_start,
            current_period_end=payload.period_end,
            cancel_at_period_end=payload.cancel_at_period_end,
            canceled_at=payload.canceled_at_datetime,
        )

        async with UnitOfWork(db) as uow:
            row = await crud.subscription.get_by_subscription_id(
                db, subscription_id=payload.id, for_update=True
            )
            tenant_id = await self._resolve_tenant(db, row, payload)
            change = plan_subscription_change(self._stored(row) if row else None, context)

            if row is None:
                row = await crud.subscription.create(
                    db,
                    obj_in=schemas.SubscriptionCreate(
                        subscription_id=payload.id,
                        tenant_id=tenant_id,
                        plan_id=metadata_plan_id(payload.metadata),
                        credit_amount=metadata_credit_amount(payload.metadata),
                        stripe_customer_id=payload.customer,
                        stripe_price_id=payload.price_id,
                        subscription_metadata=payload.metadata or None,
                        **change.updates,
                    ),
                    uow=uow,
                )
                created = True
            else:
                updates = {**self._detail_updates(row, payload, change), **change.updates}
                if updates:
                    await crud.subscription.update(db, db_obj=row, obj_in=updates, uow=uow)
                created = False

            result = SubscriptionLedgerResult(
                subscription=schemas.Subscription.model_validate(row),
                change=change,
                created=created,
            )

        return result

    @staticmethod
    async def _resolve_tenant(
        db: AsyncSession, row: Optional[Subscription], payload: SubscriptionPayload
    ) -> str:
        """Tenant owning the subscription: the stored one wins over metadata."""
        metadata_tenant = metadata_tenant_id(payload.metadata)

        if row is not None:
            if metadata_tenant and metadata_tenant != row.tenant_id:
                raise InvariantViolation(
                    f"Subscription {payload.id} belongs to tenant {row.tenant_id}, "
                    f"event metadata names {metadata_tenant}"
                )
            return row.tenant_id

        if not metadata_tenant:
            raise InvariantViolation(f"Subscription {payload.id} names no tenant")
        if not await crud.tenant.exists(db, tenant_id=metadata_tenant):
            raise InvariantViolation(f"Subscription {payload.id} names unknown tenant")
        return metadata_tenant

    @staticmethod
    def _stored(row: Subscription) -> StoredSubscription:
        return StoredSubscription(
            status=schemas.SubscriptionStatus(row.status),
            current_period_start=row.current_period_start,
            current_period_end=row.current_period_end,
            cancel_at_period_end=row.cancel_at_period_end,
            canceled_at=row.canceled_at,
            last_event_at=row.last_event_at,
            last_event_type=row.last_event_type,
        )

    @staticmethod
    def _detail_updates(
        row: Subscription, payload: SubscriptionPayload, change: SubscriptionChange
    ) -> dict[str, Any]:
        """Descriptive fields: fill what is missing, refresh the rest from newer events."""
        updates: dict[str, Any] = {}
        if row.plan_id is None and metadata_plan_id(payload.metadata):
            updates["plan_id"] = metadata_plan_id(payload.metadata)
        if row.credit_amount is None and metadata_credit_amount(payload.metadata):
            updates["credit_amount"] = metadata_credit_amount(payload.metadata)
        if row.stripe_customer_id is None and payload.customer:
            updates["stripe_customer_id"] = payload.customer
        if not change.stale:
            if payload.price_id and payload.price_id != row.stripe_price_id:
                updates["stripe_price_id"] = payload.price_id
            if payload.metadata and payload.metadata != row.subscription_metadata:
                updates["subscription_metadata"] = payload.metadata
        return updates


subscription_ledger = SubscriptionLedger()
