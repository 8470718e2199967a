"""Idempotent credit granter.

Every credit-bearing event is reduced to a grant key. The first call for a key inserts a
``CreditGrant`` row and increments the tenant's balance in the same transaction; every later
call, concurrent or not, finds the key taken and applies nothing.
"""

import hashlib

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ledgerhook import crud, schemas
from ledgerhook.core.config import settings
from ledgerhook.core.exceptions import InvariantViolation, TransientStorageError
from ledgerhook.core.logging import logger
from ledgerhook.db.unit_of_work import UnitOfWork

ONE_TIME_PERIOD = "one_time"
INITIAL_PERIOD = "initial"

granter_logger = logger.with_prefix("Credit granter: ")


def invoice_period(invoice_id: str) -> str:
    """Period reference of a renewal invoice."""
    return f"invoice:{invoice_id}"


def compute_grant_key(tenant_id: str, purchase_reference: str, period_reference: str) -> str:
    """Derive the grant key of a purchase period.

    The same tenant, purchase and period always yield the same key, whichever event type
    announced the payment.

    Returns:
        str: 64 character hex sha256 digest
    """
    raw = f"{tenant_id}|{purchase_reference}|{period_reference}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class CreditGranter:
    """Applies credit grants exactly once per grant key."""

    def __init__(self, retry_attempts: int = settings.STORAGE_RETRY_ATTEMPTS):
        """Initialize the granter.

        Args:
            retry_attempts: Attempts for a grant transaction that fails on a transient
                database error
        """
        self.retry_attempts = max(1, retry_attempts)

    async def grant_credits(
        self,
        db: AsyncSession,
        *,
        tenant_id: str,
        amount: int,
        grant_key: str,
        purchase_reference: str,
        period_reference: str,
        source_event_id: str,
        source_event_type: str,
    ) -> schemas.CreditGrantResult:
        """Grant credits to a tenant, at most once per grant key.

        Args:
            db: Database session
            tenant_id: Tenant receiving the credits
            amount: Credits to grant, a positive integer
            grant_key: Result of ``compute_grant_key`` for the purchase period
            purchase_reference: Checkout session id or subscription id
            period_reference: Period the credits pay for
            source_event_id: Event that triggered the grant
            source_event_type: Type of that event

        Returns:
            CreditGrantResult: ``granted`` with the new balance, or ``already_granted``

        Raises:
            InvariantViolation: If the amount is not positive, the tenant is unknown, or the
                key was already granted with a different amount
            TransientStorageError: If the database stayed unavailable through every attempt
        """
        if amount <= 0:
            raise InvariantViolation(f"Grant amount must be positive, got {amount}")

        grant_in = schemas.CreditGrantCreate(
            grant_key=grant_key,
            tenant_id=tenant_id,
            amount=amount,
            purchase_reference=purchase_reference,
            period_reference=period_reference,
            source_event_id=source_event_id,
            source_event_type=source_event_type,
        )

        retrying = retry(
            retry=retry_if_exception_type(TransientStorageError),
            wait=wait_exponential(multiplier=0.1, min=0.1, max=1),
            stop=stop_after_attempt(self.retry_attempts),
            reraise=True,
        )
        return await retrying(self._grant_once)(db, grant_in)

    async def _grant_once(
        self, db: AsyncSession, grant_in: schemas.CreditGrantCreate
    ) -> schemas.CreditGrantResult:
        """One attempt: check the key, then insert grant and increment balance atomically."""
        try:
            existing = await crud.credit_grant.get_by_key(db, grant_key=grant_in.grant_key)
            if existing is not None:
                # The rollback expires the loaded grant, so it is read first
                try:
                    return self._already_granted(existing, grant_in)
                finally:
                    await db.rollback()

            if not await crud.tenant.exists(db, tenant_id=grant_in.tenant_id):
                await db.rollback()
                raise InvariantViolation(f"Unknown tenant {grant_in.tenant_id}")

            async with UnitOfWork(db) as uow:
                await crud.credit_grant.create(db, obj_in=grant_in, uow=uow)
                balance = await crud.credit_balance.increment(
                    db, tenant_id=grant_in.tenant_id, amount=grant_in.amount, uow=uow
                )
        except IntegrityError:
            # Lost the race for the grant key to a concurrent delivery
            await db.rollback()
            return await self._resolve_conflict(db, grant_in)
        except DBAPIError as e:
            await db.rollback()
            granter_logger.warning(f"Transient storage error granting {grant_in.grant_key}: {e}")
            raise TransientStorageError(f"Could not apply credit grant: {e}") from e

        granter_logger.info(
            f"Granted {grant_in.amount} credits to tenant {grant_in.tenant_id} "
            f"for {grant_in.purchase_reference}/{grant_in.period_reference}"
        )
        return schemas.CreditGrantResult(
            status=schemas.GrantStatus.GRANTED,
            grant_key=grant_in.grant_key,
            tenant_id=grant_in.tenant_id,
            amount=grant_in.amount,
            balance=balance,
        )

    async def _resolve_conflict(
        self, db: AsyncSession, grant_in: schemas.CreditGrantCreate
    ) -> schemas.CreditGrantResult:
        """Read the grant that won the race for this key."""
        try:
            existing = await crud.credit_grant.get_by_key(db, grant_key=grant_in.grant_key)
        except DBAPIError as e:
            await db.rollback()
            raise TransientStorageError(f"Could not read credit grant: {e}") from e

        if existing is None:
            # The conflict was not on the grant key, or the winner has not committed
            raise TransientStorageError(
                f"Grant {grant_in.grant_key} conflicted but no grant is stored"
            )
        try:
            return self._already_granted(existing, grant_in)
        finally:
            await db.rollback()

    @staticmethod
    def _already_granted(existing, grant_in: schemas.CreditGrantCreate):
        """Result for a key that was granted before; the amounts must agree."""
        if existing.amount != grant_in.amount:
            raise InvariantViolation(
                f"Grant {grant_in.grant_key} was applied with {existing.amount} credits, "
                f"event {grant_in.source_event_id} asks for {grant_in.amount}"
            )
        return schemas.CreditGrantResult(
            status=schemas.GrantStatus.ALREADY_GRANTED,
            grant_key=grant_in.grant_key,
            tenant_id=existing.tenant_id,
            amount=existing.amount,
        )


credit_granter = CreditGranter()
