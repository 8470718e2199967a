"""Unit tests for the webhook event authenticator."""

import json
import time
from datetime import datetime

import pytest

from ledgerhook.billing.authenticator import EventAuthenticator
from ledgerhook.core.exceptions import AuthenticationError
from ledgerhook.integrations.stripe_client import StripeClient
from tests.fixtures.stripe_events import (
    BASE_TIMESTAMP,
    WEBHOOK_SECRET,
    checkout_session,
    sign_payload,
    signed_delivery,
    stripe_event,
    subscription,
)


@pytest.fixture
def authenticator():
    """Authenticator holding the test webhook secret."""
    return EventAuthenticator(StripeClient(webhook_secret=WEBHOOK_SECRET))


def test_valid_event_is_parsed(authenticator):
    """A correctly signed checkout event is turned into a typed event."""
    envelope = stripe_event(
        "checkout.session.completed",
        checkout_session(metadata={"tenant_id": "tenant_acme", "credit_count": "100"}),
        event_id="evt_checkout_1",
    )
    payload, signature = signed_delivery(envelope)

    event = authenticator.authenticate(payload, signature)

    assert event.event_id == "evt_checkout_1"
    assert event.event_type == "checkout.session.completed"
    assert event.occurred_at == datetime(2026, 1, 1)
    assert event.payload["id"] == "cs_test_1"
    assert event.typed_payload().metadata == {"tenant_id": "tenant_acme", "credit_count": "100"}
    assert event.previous_attributes == {}
    assert event.previous_status is None


def test_update_carries_previous_attributes(authenticator):
    """The fields an update changed are kept with their old values."""
    envelope = stripe_event(
        "customer.subscription.updated",
        subscription(status="past_due"),
        previous_attributes={"status": "active", "latest_invoice": "in_test_1"},
    )

    event = authenticator.authenticate(*signed_delivery(envelope))

    assert event.previous_attributes == {"status": "active", "latest_invoice": "in_test_1"}
    assert event.previous_status == "active"


def test_missing_signature_is_rejected(authenticator):
    """A delivery without Stripe-Signature header is refused."""
    payload, _ = signed_delivery(stripe_event("foo.bar", {"id": "x"}))

    with pytest.raises(AuthenticationError):
        authenticator.authenticate(payload, None)

    with pytest.raises(AuthenticationError):
        authenticator.authenticate(payload, "")


def test_tampered_body_is_rejected(authenticator):
    """Changing a single byte of a signed body invalidates it."""
    envelope = stripe_event(
        "checkout.session.completed",
        checkout_session(metadata={"tenant_id": "tenant_acme", "credit_count": "100"}),
    )
    payload, signature = signed_delivery(envelope)
    tampered = payload.replace(b'"100"', b'"900"')

    with pytest.raises(AuthenticationError):
        authenticator.authenticate(tampered, signature)


def test_wrong_secret_is_rejected(authenticator):
    """A body signed with another endpoint's secret is refused."""
    payload, signature = signed_delivery(
        stripe_event("foo.bar", {"id": "x"}), secret="whsec_someone_else"
    )

    with pytest.raises(AuthenticationError):
        authenticator.authenticate(payload, signature)


def test_expired_signature_is_rejected(authenticator):
    """Signatures older than the tolerance are refused, even when otherwise valid."""
    body = json.dumps(stripe_event("foo.bar", {"id": "x"}))
    signature = sign_payload(body, timestamp=int(time.time()) - 3600)

    with pytest.raises(AuthenticationError):
        authenticator.authenticate(body.encode("utf-8"), signature)


def test_signed_non_json_is_rejected(authenticator):
    """A signed body that is not JSON is malformed."""
    body = "not json at all"

    with pytest.raises(AuthenticationError):
        authenticator.authenticate(body.encode("utf-8"), sign_payload(body))


def test_envelope_without_object_is_rejected(authenticator):
    """The envelope must carry data.object."""
    body = json.dumps({"id": "evt_1", "type": "foo.bar", "created": BASE_TIMESTAMP, "data": {}})

    with pytest.raises(AuthenticationError):
        authenticator.authenticate(body.encode("utf-8"), sign_payload(body))


def test_invalid_typed_payload_is_rejected(authenticator):
    """Known event types must match their payload model."""
    envelope = stripe_event("customer.subscription.updated", {"id": "sub_1"})
    payload, signature = signed_delivery(envelope)

    with pytest.raises(AuthenticationError):
        authenticator.authenticate(payload, signature)


def test_unknown_event_type_is_accepted(authenticator):
    """Event types without a payload model pass authentication untyped."""
    payload, signature = signed_delivery(stripe_event("foo.bar", {"id": "foo_1", "x": 1}))

    event = authenticator.authenticate(payload, signature)

    assert event.event_type == "foo.bar"
    assert event.typed_payload() is None
