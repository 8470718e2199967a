"""Tests for translating payment events into grant requests."""

import pytest

from ledgerhook.billing.credit_granter import compute_grant_key
from ledgerhook.billing.grant_translation import (
    GrantTranslator,
    metadata_credit_amount,
    metadata_plan_id,
    metadata_tenant_id,
)
from ledgerhook.billing.subscription_ledger import SubscriptionLedger
from ledgerhook.core.exceptions import InvariantViolation
from ledgerhook.integrations.stripe_client import StripeClient
from ledgerhook.schemas.billing_event import (
    CheckoutSessionPayload,
    InvoicePayload,
    SubscriptionPayload,
)
from tests.fixtures.stripe_events import (
    WEBHOOK_SECRET,
    checkout_session,
    invoice,
    subscription,
)


class FakeStripeClient(StripeClient):
    """Stripe client answering subscription lookups from memory."""

    def __init__(self, subscriptions: dict):
        super().__init__(webhook_secret=WEBHOOK_SECRET, api_key="sk_test_fake")
        self.subscriptions = subscriptions
        self.lookups = []

    async def retrieve_subscription(self, subscription_id: str) -> SubscriptionPayload:
        self.lookups.append(subscription_id)
        return SubscriptionPayload.model_validate(self.subscriptions[subscription_id])


@pytest.fixture
def translator():
    """Translator without Stripe API access."""
    return GrantTranslator(StripeClient(webhook_secret=WEBHOOK_SECRET))


def test_metadata_helpers_accept_legacy_keys():
    """Older checkouts name the tenant user_id and the plan package_id."""
    metadata = {"user_id": "tenant_acme", "package_id": "7", "credit_count": "250"}

    assert metadata_tenant_id(metadata) == "tenant_acme"
    assert metadata_plan_id(metadata) == "7"
    assert metadata_credit_amount(metadata) == 250
    assert metadata_tenant_id({"tenant_id": "a", "user_id": "b"}) == "a"


@pytest.mark.parametrize("raw", ["abc", "0", "-5", "1.5"])
def test_invalid_credit_count_is_invariant_violation(raw):
    """Credit counts must be positive integers."""
    with pytest.raises(InvariantViolation):
        metadata_credit_amount({"credit_count": raw})


@pytest.mark.asyncio
async def test_one_time_checkout(db_session, translator):
    """A paid one-time checkout grants once for its session."""
    session = CheckoutSessionPayload.model_validate(
        checkout_session(metadata={"tenant_id": "tenant_acme", "credit_count": "100"})
    )

    request = await translator.from_checkout(db_session, session)

    assert request.tenant_id == "tenant_acme"
    assert request.amount == 100
    assert request.purchase_reference == "cs_test_1"
    assert request.period_reference == "one_time"
    assert request.grant_key == compute_grant_key("tenant_acme", "cs_test_1", "one_time")


@pytest.mark.asyncio
async def test_unpaid_checkout_grants_nothing(db_session, translator):
    """Checkouts waiting for a delayed payment are not granted yet."""
    session = CheckoutSessionPayload.model_validate(
        checkout_session(
            payment_status="unpaid",
            metadata={"tenant_id": "tenant_acme", "credit_count": "100"},
        )
    )

    assert await translator.from_checkout(db_session, session) is None


@pytest.mark.asyncio
async def test_checkout_without_credit_metadata_grants_nothing(db_session, translator):
    """Checkouts for things other than credits are ignored."""
    session = CheckoutSessionPayload.model_validate(checkout_session(metadata={}))

    assert await translator.from_checkout(db_session, session) is None


@pytest.mark.asyncio
async def test_checkout_with_partial_metadata_is_invariant_violation(db_session, translator):
    """A credit count without a tenant cannot be attributed."""
    session = CheckoutSessionPayload.model_validate(
        checkout_session(metadata={"credit_count": "100"})
    )

    with pytest.raises(InvariantViolation):
        await translator.from_checkout(db_session, session)


@pytest.mark.asyncio
async def test_first_payment_collapses_to_one_key(db_session, translator):
    """Subscription checkout, first invoice and activation share the initial-period key."""
    metadata = {"tenant_id": "tenant_acme", "credit_count": "500"}

    from_checkout = await translator.from_checkout(
        db_session,
        CheckoutSessionPayload.model_validate(
            checkout_session(mode="subscription", subscription="sub_test_1", metadata=metadata)
        ),
    )
    from_invoice = await translator.from_invoice(
        db_session,
        InvoicePayload.model_validate(invoice(subscription_metadata=metadata, basil=True)),
    )
    from_subscription = await translator.from_subscription(
        db_session, SubscriptionPayload.model_validate(subscription(metadata=metadata))
    )

    assert from_checkout.grant_key == from_invoice.grant_key == from_subscription.grant_key
    assert from_invoice.period_reference == "initial"


@pytest.mark.asyncio
async def test_renewal_invoice_has_its_own_period(db_session, translator):
    """Every renewal invoice is a distinct grant."""
    request = await translator.from_invoice(
        db_session,
        InvoicePayload.model_validate(
            invoice(
                "in_renewal_2",
                billing_reason="subscription_cycle",
                metadata={"tenant_id": "tenant_acme", "credit_count": "500"},
            )
        ),
    )

    assert request.purchase_reference == "sub_test_1"
    assert request.period_reference == "invoice:in_renewal_2"


@pytest.mark.asyncio
async def test_invoice_without_subscription_grants_nothing(db_session, translator):
    """One-off invoices are not credit purchases."""
    payload = InvoicePayload.model_validate(invoice(subscription=None, billing_reason="manual"))

    assert await translator.from_invoice(db_session, payload) is None


@pytest.mark.asyncio
async def test_stored_subscription_wins_over_metadata(db_session, tenant, translator):
    """Tenant and amount registered at checkout creation take precedence."""
    await SubscriptionLedger().register_pending_subscription(
        db_session, subscription_id="sub_test_1", tenant_id=tenant.tenant_id, credit_amount=500
    )

    request = await translator.from_invoice(
        db_session, InvoicePayload.model_validate(invoice(metadata={"credit_count": "9000"}))
    )

    assert request.tenant_id == tenant.tenant_id
    assert request.amount == 500


@pytest.mark.asyncio
async def test_metadata_naming_other_tenant_is_invariant_violation(
    db_session, tenant, other_tenant, translator
):
    """Echoed metadata cannot move a registered subscription's credits elsewhere."""
    await SubscriptionLedger().register_pending_subscription(
        db_session, subscription_id="sub_test_1", tenant_id=tenant.tenant_id, credit_amount=500
    )

    with pytest.raises(InvariantViolation):
        await translator.from_invoice(
            db_session,
            InvoicePayload.model_validate(
                invoice(metadata={"tenant_id": other_tenant.tenant_id})
            ),
        )


@pytest.mark.asyncio
async def test_unresolvable_invoice_is_invariant_violation(db_session, translator):
    """Without a stored row, metadata or API access the invoice cannot be attributed."""
    with pytest.raises(InvariantViolation):
        await translator.from_invoice(db_session, InvoicePayload.model_validate(invoice()))


@pytest.mark.asyncio
async def test_invoice_falls_back_to_stripe_lookup(db_session):
    """With an API key, the subscription's metadata is fetched from Stripe."""
    client = FakeStripeClient(
        {"sub_test_1": subscription(metadata={"user_id": "tenant_acme", "credit_count": "300"})}
    )

    request = await GrantTranslator(client).from_invoice(
        db_session, InvoicePayload.model_validate(invoice())
    )

    assert client.lookups == ["sub_test_1"]
    assert request.tenant_id == "tenant_acme"
    assert request.amount == 300
