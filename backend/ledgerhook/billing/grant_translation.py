"""Translation of payment events into grant requests.

A paid first period can be announced by a subscription-mode checkout, by the subscription's
first invoice and by the subscription becoming active. All three translate to the same
``(subscription_id, "initial")`` period and therefore to the same grant key.
"""

from dataclasses import dataclass
from typing import Dict, Optional

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerhook import crud
from ledgerhook.billing.credit_granter import (
    INITIAL_PERIOD,
    ONE_TIME_PERIOD,
    compute_grant_key,
    invoice_period,
)
from ledgerhook.core.exceptions import InvariantViolation, TransientStorageError
from ledgerhook.core.logging import logger
from ledgerhook.integrations.stripe_client import StripeClient, stripe_client
from ledgerhook.schemas.billing_event import (
    CheckoutSessionPayload,
    InvoicePayload,
    SubscriptionPayload,
)

# Checkout metadata keys. user_id and package_id are the names used by older checkouts.
TENANT_KEYS = ("tenant_id", "user_id")
PLAN_KEYS = ("plan_id", "package_id")
CREDIT_KEY = "credit_count"


def metadata_tenant_id(metadata: Dict[str, str]) -> Optional[str]:
    """Tenant named in processor metadata."""
    for key in TENANT_KEYS:
        if metadata.get(key):
            return metadata[key]
    return None


def metadata_plan_id(metadata: Dict[str, str]) -> Optional[str]:
    """Plan named in processor metadata."""
    for key in PLAN_KEYS:
        if metadata.get(key):
            return metadata[key]
    return None


def metadata_credit_amount(metadata: Dict[str, str]) -> Optional[int]:
    """Credit amount named in processor metadata.

    Raises:
        InvariantViolation: If the value is present but not a positive integer
    """
    raw = metadata.get(CREDIT_KEY)
    if raw is None or raw == "":
        return None
    try:
        amount = int(raw)
    except ValueError as e:
        raise InvariantViolation(f"Invalid {CREDIT_KEY} in metadata: {raw!r}") from e
    if amount <= 0:
        raise InvariantViolation(f"Invalid {CREDIT_KEY} in metadata: {raw!r}")
    return amount


@dataclass
class GrantRequest:
    """A grant the processor should apply, identified by its purchase period."""

    tenant_id: str
    amount: int
    purchase_reference: str
    period_reference: str

    @property
    def grant_key(self) -> str:
        """Idempotency key of this grant."""
        return compute_grant_key(self.tenant_id, self.purchase_reference, self.period_reference)


class GrantTranslator:
    """Resolves tenant, amount and purchase period for credit-bearing events.

    Tenant and amount come from the stored subscription first, then from the event's
    metadata and, when a Stripe API key is configured, from the subscription at Stripe.
    """

    def __init__(self, client: Optional[StripeClient] = None):
        """Initialize the translator."""
        self.client = client or stripe_client

    async def from_checkout(
        self, db: AsyncSession, checkout: CheckoutSessionPayload
    ) -> Optional[GrantRequest]:
        """Translate a completed checkout session.

        Returns:
            The grant request, or None when the session is unpaid or buys no credits
        """
        if not checkout.is_paid:
            return None

        if checkout.mode == "subscription":
            if not checkout.subscription:
                raise InvariantViolation(
                    f"Subscription checkout {checkout.id} carries no subscription id"
                )
            return await self._subscription_grant(
                db, checkout.subscription, INITIAL_PERIOD, checkout.metadata
            )

        tenant_id = metadata_tenant_id(checkout.metadata)
        amount = metadata_credit_amount(checkout.metadata)
        if tenant_id is None and amount is None:
            return None
        if tenant_id is None or amount is None:
            raise InvariantViolation(f"Checkout {checkout.id} has incomplete credit metadata")
        return GrantRequest(
            tenant_id=tenant_id,
            amount=amount,
            purchase_reference=checkout.id,
            period_reference=ONE_TIME_PERIOD,
        )

    async def from_invoice(
        self, db: AsyncSession, invoice: InvoicePayload
    ) -> Optional[GrantRequest]:
        """Translate a paid invoice.

        The subscription's first invoice pays for the initial period; every other invoice is
        a renewal with a period of its own.

        Returns:
            The grant request, or None for invoices that do not belong to a subscription
        """
        subscription_id = invoice.subscription_reference
        if not subscription_id:
            return None
        if invoice.status is not None and invoice.status != "paid":
            return None

        if invoice.is_first_invoice:
            period = INITIAL_PERIOD
        else:
            period = invoice_period(invoice.id)

        metadata = {**invoice.metadata, **invoice.subscription_metadata}
        return await self._subscription_grant(db, subscription_id, period, metadata)

    async def from_subscription(
        self, db: AsyncSession, subscription: SubscriptionPayload
    ) -> GrantRequest:
        """Translate a subscription that became active into its initial-period grant."""
        return await self._subscription_grant(
            db, subscription.id, INITIAL_PERIOD, subscription.metadata
        )

    async def _subscription_grant(
        self,
        db: AsyncSession,
        subscription_id: str,
        period_reference: str,
        metadata: Dict[str, str],
    ) -> GrantRequest:
        """Resolve tenant and amount of a subscription period.

        Raises:
            InvariantViolation: If tenant or amount cannot be resolved, or the metadata names
                another tenant than the stored subscription
            TransientStorageError: If the stored subscription cannot be read
        """
        try:
            stored = await crud.subscription.get_by_subscription_id(
                db, subscription_id=subscription_id
            )
        except DBAPIError as e:
            await db.rollback()
            raise TransientStorageError(
                f"Could not read subscription {subscription_id}: {e}"
            ) from e
        tenant_id = stored.tenant_id if stored else None
        amount = stored.credit_amount if stored else None

        metadata_tenant = metadata_tenant_id(metadata)
        if tenant_id and metadata_tenant and metadata_tenant != tenant_id:
            raise InvariantViolation(
                f"Subscription {subscription_id} belongs to tenant {tenant_id}, "
                f"event metadata names {metadata_tenant}"
            )
        if tenant_id is None:
            tenant_id = metadata_tenant
        if amount is None:
            amount = metadata_credit_amount(metadata)

        if (tenant_id is None or amount is None) and self.client.api_enabled:
            logger.info(f"Looking up subscription {subscription_id} at Stripe")
            remote = await self.client.retrieve_subscription(subscription_id)
            if tenant_id is None:
                tenant_id = metadata_tenant_id(remote.metadata)
            if amount is None:
                amount = metadata_credit_amount(remote.metadata)

        if tenant_id is None or amount is None:
            raise InvariantViolation(
                f"Cannot resolve tenant and credit amount for subscription {subscription_id}"
            )

        return GrantRequest(
            tenant_id=tenant_id,
            amount=amount,
            purchase_reference=subscription_id,
            period_reference=period_reference,
        )


grant_translator = GrantTranslator()
