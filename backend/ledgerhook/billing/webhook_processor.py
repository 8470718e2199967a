"""Webhook processor for Stripe billing events.

This module authenticates incoming Stripe webhook events, routes them to the subscription
ledger or the credit granter, and records how each delivery was handled.
"""

from typing import Optional

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerhook import crud, schemas
from ledgerhook.billing.authenticator import EventAuthenticator, event_authenticator
from ledgerhook.billing.credit_granter import CreditGranter, credit_granter
from ledgerhook.billing.grant_translation import GrantRequest, GrantTranslator, grant_translator
from ledgerhook.billing.router import EventRouter
from ledgerhook.billing.subscription_ledger import SubscriptionLedger, subscription_ledger
from ledgerhook.core.datetime_utils import utc_now_naive
from ledgerhook.core.exceptions import (
    AuthenticationError,
    ExternalServiceError,
    InvariantViolation,
    TransientStorageError,
)
from ledgerhook.core.logging import ContextualLogger, logger
from ledgerhook.schemas.billing_event import (
    BillingEvent,
    CheckoutSessionPayload,
    EventType,
    InvoicePayload,
    ProcessingOutcome,
    ProcessingResult,
    SubscriptionPayload,
)

RECONCILIATION_ALERT = "billing_reconciliation"


class BillingWebhookProcessor:
    """Process Stripe webhook events for billing."""

    def __init__(
        self,
        db: AsyncSession,
        authenticator: Optional[EventAuthenticator] = None,
        ledger: Optional[SubscriptionLedger] = None,
        granter: Optional[CreditGranter] = None,
        translator: Optional[GrantTranslator] = None,
    ):
        """Initialize webhook processor."""
        self.db = db
        self.authenticator = authenticator or event_authenticator
        self.ledger = ledger or subscription_ledger
        self.granter = granter or credit_granter
        self.translator = translator or grant_translator

        # Event handler mapping
        self.router = EventRouter()
        self.router.register(
            EventType.CHECKOUT_SESSION_COMPLETED.value, self._handle_checkout_paid
        )
        self.router.register(
            EventType.CHECKOUT_SESSION_ASYNC_PAYMENT_SUCCEEDED.value, self._handle_checkout_paid
        )
        self.router.register(
            EventType.CHECKOUT_SESSION_ASYNC_PAYMENT_FAILED.value, self._handle_checkout_closed
        )
        self.router.register(EventType.CHECKOUT_SESSION_EXPIRED.value, self._handle_checkout_closed)
        self.router.register(
            EventType.INVOICE_PAYMENT_SUCCEEDED.value, self._handle_invoice_payment_succeeded
        )
        self.router.register(EventType.SUBSCRIPTION_CREATED.value, self._handle_subscription)
        self.router.register(EventType.SUBSCRIPTION_UPDATED.value, self._handle_subscription)

    def _create_context_logger(self, event: BillingEvent) -> ContextualLogger:
        """Create contextual logger with event context."""
        return logger.with_context(
            auth_method="stripe_webhook",
            event_type=event.event_type,
            stripe_event_id=event.event_id,
        )

    async def handle_webhook(self, payload: bytes, signature: Optional[str]) -> ProcessingResult:
        """Authenticate a raw delivery and process it.

        Args:
            payload: Raw request body
            signature: Stripe-Signature header value

        Returns:
            ProcessingResult: How the delivery was handled. Rejected deliveries change nothing
                and are not written to the audit log.
        """
        try:
            event = self.authenticator.authenticate(payload, signature)
        except AuthenticationError as e:
            logger.warning(f"Rejected Stripe webhook: {e.message}")
            return ProcessingResult(outcome=ProcessingOutcome.REJECTED, detail=e.message)

        return await self.process_event(event)

    async def process_event(self, event: BillingEvent) -> ProcessingResult:
        """Process an authenticated Stripe event.

        Domain failures become outcomes: invariant violations are acknowledged and flagged for
        reconciliation, transient failures ask for redelivery. Anything else is recorded as a
        retry and propagates, so the delivery fails and Stripe sends it again.
        """
        log = self._create_context_logger(event)
        log.info(f"Processing webhook event: {event.event_type}")

        try:
            result = await self.router.dispatch(event, log)
        except InvariantViolation as e:
            log.with_context(alert=RECONCILIATION_ALERT).error(
                f"Billing invariant violated by {event.event_type}: {e.message}"
            )
            result = self._result(event, ProcessingOutcome.INVARIANT_VIOLATION, e.message)
        except TransientStorageError as e:
            log.warning(f"Transient failure handling {event.event_type}: {e.message}")
            result = self._result(event, ProcessingOutcome.RETRY, e.message)
        except ExternalServiceError as e:
            log.warning(f"{e.service_name} unavailable handling {event.event_type}: {e.message}")
            result = self._result(event, ProcessingOutcome.RETRY, str(e))
        except Exception as e:
            log.error(f"Error handling {event.event_type}: {e}", exc_info=True)
            failed = self._result(
                event, ProcessingOutcome.RETRY, f"unexpected error: {e.__class__.__name__}: {e}"
            )
            await self._record(event, failed, log)
            raise

        if result.tenant_id:
            log = log.with_context(tenant_id=result.tenant_id)
        log.info(f"Webhook event {event.event_type} {result.outcome.value}: {result.detail}")

        await self._record(event, result, log)
        return result

    async def _record(
        self, event: BillingEvent, result: ProcessingResult, log: ContextualLogger
    ) -> None:
        """Write the outcome to the audit log.

        The audit log never decides anything, so a failed write is logged and the outcome
        stands.
        """
        try:
            await self.db.rollback()
            await crud.billing_event.record(
                self.db,
                obj_in=schemas.BillingEventLogCreate(
                    stripe_event_id=event.event_id,
                    event_type=event.event_type,
                    outcome=result.outcome,
                    detail=result.detail,
                    tenant_id=result.tenant_id,
                    last_processed_at=utc_now_naive(),
                ),
            )
        except DBAPIError as e:
            await self.db.rollback()
            log.error(f"Failed to record billing event {event.event_id}: {e}")

    @staticmethod
    def _result(
        event: BillingEvent,
        outcome: ProcessingOutcome,
        detail: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> ProcessingResult:
        return ProcessingResult(
            outcome=outcome,
            event_id=event.event_id,
            event_type=event.event_type,
            tenant_id=tenant_id,
            detail=detail,
        )

    async def _apply_grant(
        self, event: BillingEvent, request: GrantRequest, log: ContextualLogger
    ) -> schemas.CreditGrantResult:
        """Hand a grant request to the credit granter."""
        grant = await self.granter.grant_credits(
            self.db,
            tenant_id=request.tenant_id,
            amount=request.amount,
            grant_key=request.grant_key,
            purchase_reference=request.purchase_reference,
            period_reference=request.period_reference,
            source_event_id=event.event_id,
            source_event_type=event.event_type,
        )
        if grant.applied:
            log.info(
                f"Granted {grant.amount} credits for {request.purchase_reference}/"
                f"{request.period_reference}, balance {grant.balance}"
            )
        else:
            log.info(
                f"Credits for {request.purchase_reference}/{request.period_reference} "
                "were already granted"
            )
        return grant

    def _grant_result(
        self, event: BillingEvent, request: GrantRequest, grant: schemas.CreditGrantResult
    ) -> ProcessingResult:
        if grant.applied:
            return self._result(
                event,
                ProcessingOutcome.APPLIED,
                f"granted {grant.amount} credits",
                tenant_id=request.tenant_id,
            )
        return self._result(
            event,
            ProcessingOutcome.ALREADY_APPLIED,
            f"{request.period_reference} credits already granted",
            tenant_id=request.tenant_id,
        )

    # Event handlers

    async def _handle_checkout_paid(
        self, event: BillingEvent, log: ContextualLogger
    ) -> ProcessingResult:
        """Grant credits for a paid checkout session.

        ``checkout.session.async_payment_succeeded`` is handled the same way: delayed payment
        methods complete the session unpaid and report the payment later.
        """
        session = CheckoutSessionPayload.model_validate(event.payload)
        log.info(
            f"Checkout {session.id} ({session.mode}) payment status {session.payment_status}"
        )

        if not session.is_paid:
            return self._result(
                event, ProcessingOutcome.IGNORED, f"payment status {session.payment_status}"
            )

        request = await self.translator.from_checkout(self.db, session)
        if request is None:
            return self._result(event, ProcessingOutcome.IGNORED, "checkout carries no credits")

        grant = await self._apply_grant(event, request, log)
        return self._grant_result(event, request, grant)

    async def _handle_checkout_closed(
        self, event: BillingEvent, log: ContextualLogger
    ) -> ProcessingResult:
        """Record a checkout that ended without payment. Nothing to apply."""
        session = CheckoutSessionPayload.model_validate(event.payload)
        log.info(f"Checkout {session.id} closed unpaid: {event.event_type}")
        return self._result(
            event, ProcessingOutcome.IGNORED, f"checkout {session.id} closed without payment"
        )

    async def _handle_invoice_payment_succeeded(
        self, event: BillingEvent, log: ContextualLogger
    ) -> ProcessingResult:
        """Grant the credits of a paid subscription invoice."""
        invoice = InvoicePayload.model_validate(event.payload)
        log.info(
            f"Invoice {invoice.id} paid for subscription {invoice.subscription_reference} "
            f"({invoice.billing_reason})"
        )

        request = await self.translator.from_invoice(self.db, invoice)
        if request is None:
            return self._result(
                event, ProcessingOutcome.IGNORED, "invoice does not pay for a subscription"
            )

        grant = await self._apply_grant(event, request, log)
        return self._grant_result(event, request, grant)

    async def _handle_subscription(
        self, event: BillingEvent, log: ContextualLogger
    ) -> ProcessingResult:
        """Apply a subscription lifecycle event and grant the first period on activation."""
        applied = await self.ledger.apply_subscription_event(self.db, event)
        subscription = applied.subscription
        change = applied.change
        log = log.with_context(tenant_id=subscription.tenant_id)
        log.info(
            f"Subscription {subscription.subscription_id}: {change.reason}, "
            f"status {subscription.status.value}"
        )
        if event.previous_attributes:
            log.info(f"Changed at Stripe: {', '.join(sorted(event.previous_attributes))}")

        if change.stale:
            return self._result(
                event, ProcessingOutcome.IGNORED, change.reason, tenant_id=subscription.tenant_id
            )

        if not change.activates:
            detail = f"subscription {subscription.status.value}"
            if event.previous_status:
                detail = f"{detail}, was {event.previous_status} at Stripe"
            return self._result(
                event, ProcessingOutcome.APPLIED, detail, tenant_id=subscription.tenant_id
            )

        payload = SubscriptionPayload.model_validate(event.payload)
        request = await self.translator.from_subscription(self.db, payload)
        grant = await self._apply_grant(event, request, log)
        detail = "initial credits granted" if grant.applied else "initial credits already granted"
        return self._result(
            event,
            ProcessingOutcome.APPLIED,
            f"subscription active, {detail}",
            tenant_id=subscription.tenant_id,
        )
