"""End-to-end tests of the webhook processor: signed payload in, ledger state out."""

import json

import pytest
from sqlalchemy.exc import OperationalError

from ledgerhook import crud, schemas
from ledgerhook.billing.authenticator import EventAuthenticator
from ledgerhook.billing.grant_translation import GrantTranslator
from ledgerhook.billing.webhook_processor import BillingWebhookProcessor
from ledgerhook.core.exceptions import TransientStorageError
from ledgerhook.integrations.stripe_client import StripeClient
from ledgerhook.schemas.billing_event import ProcessingOutcome
from tests.fixtures.stripe_events import (
    BASE_TIMESTAMP,
    DAY,
    WEBHOOK_SECRET,
    checkout_session,
    invoice,
    signed_delivery,
    stripe_event,
    subscription,
)

SUBSCRIPTION_METADATA = {"tenant_id": "tenant_acme", "credit_count": "500", "plan_id": "pro"}


@pytest.fixture
def processor(db_session):
    """Processor with the test secret and no Stripe API access."""
    client = StripeClient(webhook_secret=WEBHOOK_SECRET)
    return BillingWebhookProcessor(
        db_session,
        authenticator=EventAuthenticator(client),
        translator=GrantTranslator(client),
    )


async def _deliver(processor, envelope):
    payload, signature = signed_delivery(envelope)
    return await processor.handle_webhook(payload, signature)


async def _balance(db_session, tenant_id="tenant_acme"):
    return await crud.credit_balance.get_credits_available(db_session, tenant_id=tenant_id)


@pytest.mark.asyncio
async def test_subscription_and_duplicated_first_invoice_grant_once(
    processor, db_session, tenant
):
    """Activation plus a twice-delivered first invoice grant 500 credits, not 1000."""
    created = stripe_event(
        "customer.subscription.created",
        subscription(metadata=SUBSCRIPTION_METADATA),
        event_id="evt_sub_created",
    )
    first_invoice = stripe_event(
        "invoice.payment_succeeded",
        invoice(subscription_metadata=SUBSCRIPTION_METADATA, basil=True),
        event_id="evt_invoice_1",
        created=BASE_TIMESTAMP + 2,
    )

    sub_result = await _deliver(processor, created)
    invoice_result = await _deliver(processor, first_invoice)
    redelivery_result = await _deliver(processor, first_invoice)

    assert sub_result.outcome == ProcessingOutcome.APPLIED
    assert invoice_result.outcome == ProcessingOutcome.ALREADY_APPLIED
    assert redelivery_result.outcome == ProcessingOutcome.ALREADY_APPLIED
    assert await _balance(db_session) == 500

    stored = await crud.subscription.get_by_subscription_id(
        db_session, subscription_id="sub_test_1"
    )
    assert stored.status == schemas.SubscriptionStatus.ACTIVE.value

    audit = await crud.billing_event.get_by_stripe_event_id(
        db_session, stripe_event_id="evt_invoice_1"
    )
    assert audit.delivery_count == 2
    assert audit.outcome == ProcessingOutcome.ALREADY_APPLIED.value
    assert audit.tenant_id == "tenant_acme"


@pytest.mark.asyncio
async def test_first_payment_announced_three_ways_grants_once(processor, db_session, tenant):
    """Checkout, first invoice and activation, in any order, yield a single grant."""
    deliveries = [
        stripe_event(
            "invoice.payment_succeeded",
            invoice(metadata=SUBSCRIPTION_METADATA),
            event_id="evt_invoice",
        ),
        stripe_event(
            "checkout.session.completed",
            checkout_session(
                mode="subscription", subscription="sub_test_1", metadata=SUBSCRIPTION_METADATA
            ),
            event_id="evt_checkout",
        ),
        stripe_event(
            "customer.subscription.updated",
            subscription(metadata=SUBSCRIPTION_METADATA),
            event_id="evt_sub_updated",
        ),
    ]

    outcomes = [(await _deliver(processor, envelope)).outcome for envelope in deliveries]

    assert outcomes[0] == ProcessingOutcome.APPLIED
    assert outcomes[1] == ProcessingOutcome.ALREADY_APPLIED
    assert outcomes[2] == ProcessingOutcome.APPLIED
    assert await _balance(db_session) == 500
    grants = await crud.credit_grant.get_all_for_tenant(db_session, tenant_id="tenant_acme")
    assert len(grants) == 1
    assert grants[0].source_event_id == "evt_invoice"


@pytest.mark.asyncio
async def test_renewal_invoices_grant_each_period(processor, db_session, tenant):
    """Each renewal invoice adds another period of credits."""
    await _deliver(
        processor,
        stripe_event(
            "customer.subscription.created",
            subscription(metadata=SUBSCRIPTION_METADATA),
            event_id="evt_sub_created",
        ),
    )
    for number in (2, 3):
        result = await _deliver(
            processor,
            stripe_event(
                "invoice.payment_succeeded",
                invoice(f"in_renewal_{number}", billing_reason="subscription_cycle"),
                event_id=f"evt_invoice_{number}",
            ),
        )
        assert result.outcome == ProcessingOutcome.APPLIED

    assert await _balance(db_session) == 1500


@pytest.mark.asyncio
async def test_one_time_checkout_and_async_payment(processor, db_session, tenant):
    """Delayed payments are granted when they succeed, once."""
    metadata = {"tenant_id": "tenant_acme", "credit_count": "100"}
    completed = stripe_event(
        "checkout.session.completed",
        checkout_session(payment_status="unpaid", metadata=metadata),
        event_id="evt_completed",
    )
    succeeded = stripe_event(
        "checkout.session.async_payment_succeeded",
        checkout_session(metadata=metadata),
        event_id="evt_async_succeeded",
    )

    first = await _deliver(processor, completed)
    second = await _deliver(processor, succeeded)
    third = await _deliver(processor, succeeded)

    assert first.outcome == ProcessingOutcome.IGNORED
    assert second.outcome == ProcessingOutcome.APPLIED
    assert third.outcome == ProcessingOutcome.ALREADY_APPLIED
    assert await _balance(db_session) == 100


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "event_type", ["checkout.session.expired", "checkout.session.async_payment_failed"]
)
async def test_unpaid_checkout_endings_are_only_recorded(
    processor, db_session, tenant, event_type
):
    """Expired and failed checkouts are acknowledged without any mutation."""
    result = await _deliver(
        processor,
        stripe_event(
            event_type,
            checkout_session(
                payment_status="unpaid",
                metadata={"tenant_id": "tenant_acme", "credit_count": "100"},
            ),
            event_id="evt_closed",
        ),
    )

    assert result.outcome == ProcessingOutcome.IGNORED
    assert await _balance(db_session) == 0
    assert await crud.billing_event.get_by_stripe_event_id(
        db_session, stripe_event_id="evt_closed"
    )


@pytest.mark.asyncio
async def test_unknown_event_type_is_acknowledged(processor, db_session, tenant):
    """foo.bar is acknowledged and changes no ledger state."""
    result = await _deliver(processor, stripe_event("foo.bar", {"id": "foo_1"}, event_id="evt_foo"))

    assert result.outcome == ProcessingOutcome.IGNORED
    assert await crud.subscription.get_all(db_session) == []
    assert await crud.credit_grant.get_all(db_session) == []
    audit = await crud.billing_event.get_by_stripe_event_id(db_session, stripe_event_id="evt_foo")
    assert audit.outcome == ProcessingOutcome.IGNORED.value


@pytest.mark.asyncio
async def test_tampered_payload_changes_nothing(processor, db_session, tenant):
    """A forged delivery is rejected before anything is read or written."""
    envelope = stripe_event(
        "checkout.session.completed",
        checkout_session(metadata={"tenant_id": "tenant_acme", "credit_count": "100"}),
        event_id="evt_forged",
    )
    payload, signature = signed_delivery(envelope)
    forged = json.dumps(envelope).replace('"100"', '"100000"').encode("utf-8")

    result = await processor.handle_webhook(forged, signature)

    assert payload != forged
    assert result.outcome == ProcessingOutcome.REJECTED
    assert await _balance(db_session) == 0
    assert await crud.credit_grant.get_all(db_session) == []
    assert await crud.billing_event.get_all(db_session) == []


@pytest.mark.asyncio
async def test_amount_conflict_is_invariant_violation(processor, db_session, tenant):
    """A grant key redelivered with another amount is acknowledged and flagged."""
    session = checkout_session(metadata={"tenant_id": "tenant_acme", "credit_count": "100"})
    await _deliver(
        processor, stripe_event("checkout.session.completed", session, event_id="evt_1")
    )

    session["metadata"]["credit_count"] = "250"
    result = await _deliver(
        processor,
        stripe_event("checkout.session.async_payment_succeeded", session, event_id="evt_2"),
    )

    assert result.outcome == ProcessingOutcome.INVARIANT_VIOLATION
    assert await _balance(db_session) == 100
    audit = await crud.billing_event.get_by_stripe_event_id(db_session, stripe_event_id="evt_2")
    assert audit.outcome == ProcessingOutcome.INVARIANT_VIOLATION.value


@pytest.mark.asyncio
async def test_canceled_subscription_stays_canceled(processor, db_session, tenant):
    """A late active update cannot revive a canceled subscription."""
    await _deliver(
        processor,
        stripe_event(
            "customer.subscription.updated",
            subscription(status="canceled", metadata=SUBSCRIPTION_METADATA),
            event_id="evt_canceled",
            created=BASE_TIMESTAMP + 100,
        ),
    )
    result = await _deliver(
        processor,
        stripe_event(
            "customer.subscription.updated",
            subscription(status="active", metadata=SUBSCRIPTION_METADATA),
            event_id="evt_active",
            created=BASE_TIMESTAMP + 200,
        ),
    )

    stored = await crud.subscription.get_by_subscription_id(
        db_session, subscription_id="sub_test_1"
    )
    assert stored.status == schemas.SubscriptionStatus.CANCELED.value
    assert result.outcome == ProcessingOutcome.APPLIED
    assert await _balance(db_session) == 0


@pytest.mark.asyncio
async def test_transient_failure_asks_for_redelivery(db_session, tenant):
    """Storage failures are reported as retry, and the redelivery then succeeds."""

    class FlakyGranter:
        def __init__(self):
            self.calls = 0

        async def grant_credits(self, db, **kwargs):
            self.calls += 1
            raise TransientStorageError("database unavailable")

    client = StripeClient(webhook_secret=WEBHOOK_SECRET)
    processor = BillingWebhookProcessor(
        db_session,
        authenticator=EventAuthenticator(client),
        translator=GrantTranslator(client),
        granter=FlakyGranter(),
    )
    envelope = stripe_event(
        "checkout.session.completed",
        checkout_session(metadata={"tenant_id": "tenant_acme", "credit_count": "100"}),
        event_id="evt_retry",
    )

    result = await _deliver(processor, envelope)

    assert result.outcome == ProcessingOutcome.RETRY
    assert result.should_retry
    assert await _balance(db_session) == 0

    healthy = BillingWebhookProcessor(
        db_session, authenticator=EventAuthenticator(client), translator=GrantTranslator(client)
    )
    retried = await _deliver(healthy, envelope)

    assert retried.outcome == ProcessingOutcome.APPLIED
    assert await _balance(db_session) == 100
    audit = await crud.billing_event.get_by_stripe_event_id(db_session, stripe_event_id="evt_retry")
    assert audit.delivery_count == 2
    assert audit.outcome == ProcessingOutcome.APPLIED.value


@pytest.mark.asyncio
async def test_subscription_read_failure_asks_for_redelivery(
    processor, db_session, tenant, monkeypatch
):
    """A dropped connection while resolving the subscription is a retry, and is audited."""

    async def failing_get(db, *, subscription_id, for_update=False):
        raise OperationalError("SELECT subscription", {}, Exception("connection lost"))

    monkeypatch.setattr(crud.subscription, "get_by_subscription_id", failing_get)

    result = await _deliver(
        processor,
        stripe_event(
            "invoice.payment_succeeded",
            invoice(subscription_metadata=SUBSCRIPTION_METADATA, basil=True),
            event_id="evt_invoice_unreadable",
        ),
    )

    assert result.outcome == ProcessingOutcome.RETRY
    assert await _balance(db_session) == 0
    audit = await crud.billing_event.get_by_stripe_event_id(
        db_session, stripe_event_id="evt_invoice_unreadable"
    )
    assert audit.outcome == ProcessingOutcome.RETRY.value


@pytest.mark.asyncio
async def test_unexpected_error_is_audited_and_raised(db_session, tenant):
    """A bug in a handler still leaves a retry entry in the audit log."""

    class BrokenGranter:
        async def grant_credits(self, db, **kwargs):
            raise RuntimeError("granter exploded")

    client = StripeClient(webhook_secret=WEBHOOK_SECRET)
    processor = BillingWebhookProcessor(
        db_session,
        authenticator=EventAuthenticator(client),
        translator=GrantTranslator(client),
        granter=BrokenGranter(),
    )
    envelope = stripe_event(
        "checkout.session.completed",
        checkout_session(metadata={"tenant_id": "tenant_acme", "credit_count": "100"}),
        event_id="evt_broken",
    )

    with pytest.raises(RuntimeError, match="granter exploded"):
        await _deliver(processor, envelope)

    audit = await crud.billing_event.get_by_stripe_event_id(
        db_session, stripe_event_id="evt_broken"
    )
    assert audit.outcome == ProcessingOutcome.RETRY.value
    assert "RuntimeError" in audit.detail
    assert await _balance(db_session) == 0


@pytest.mark.asyncio
async def test_status_change_reports_previous_status(processor, db_session, tenant):
    """An update that moves the subscription out of active names the status it left."""
    await _deliver(
        processor,
        stripe_event(
            "customer.subscription.created",
            subscription(metadata=SUBSCRIPTION_METADATA),
            event_id="evt_sub_created",
        ),
    )

    result = await _deliver(
        processor,
        stripe_event(
            "customer.subscription.updated",
            subscription(status="past_due", metadata=SUBSCRIPTION_METADATA),
            event_id="evt_sub_past_due",
            created=BASE_TIMESTAMP + DAY,
            previous_attributes={"status": "active"},
        ),
    )

    assert result.outcome == ProcessingOutcome.APPLIED
    assert result.detail == "subscription past_due, was active at Stripe"
    assert await _balance(db_session) == 500
