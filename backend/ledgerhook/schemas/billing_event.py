"""Billing event schemas.

Typed views of the Stripe webhook envelope and of the three object kinds the processor
consumes. Only the fields the processor reads are declared; everything else Stripe sends is
ignored.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ledgerhook.core.datetime_utils import from_unix_timestamp


class EventType(str, Enum):
    """Stripe event types the processor registers handlers for."""

    CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
    CHECKOUT_SESSION_ASYNC_PAYMENT_SUCCEEDED = "checkout.session.async_payment_succeeded"
    CHECKOUT_SESSION_ASYNC_PAYMENT_FAILED = "checkout.session.async_payment_failed"
    CHECKOUT_SESSION_EXPIRED = "checkout.session.expired"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"


class ProcessingOutcome(str, Enum):
    """How a delivered event was handled."""

    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    IGNORED = "ignored"
    REJECTED = "rejected"
    INVARIANT_VIOLATION = "invariant_violation"
    RETRY = "retry"


def _expandable_id(value: Any) -> Any:
    """Reduce an expanded Stripe object to its id."""
    if isinstance(value, dict):
        return value.get("id")
    return value


class _StripeObject(BaseModel):
    """Common fields of the Stripe objects carried in ``data.object``."""

    model_config = {"extra": "ignore"}

    id: str
    customer: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)

    @field_validator("customer", mode="before")
    def collapse_customer(cls, v: Any) -> Any:
        """Accept both the customer id and an expanded customer object."""
        return _expandable_id(v)

    @field_validator("metadata", mode="before")
    def normalize_metadata(cls, v: Any) -> Dict[str, str]:
        """Stripe sends metadata values as strings; coerce and drop nulls."""
        if not v:
            return {}
        return {str(key): str(value) for key, value in v.items() if value is not None}


class CheckoutSessionPayload(_StripeObject):
    """A Stripe Checkout Session."""

    mode: str = "payment"
    payment_status: Optional[str] = None
    subscription: Optional[str] = None
    amount_total: Optional[int] = None

    @field_validator("subscription", mode="before")
    def collapse_subscription(cls, v: Any) -> Any:
        """Accept both the subscription id and an expanded subscription object."""
        return _expandable_id(v)

    @property
    def is_paid(self) -> bool:
        """Whether the session's payment has been collected."""
        return self.payment_status == "paid"


class InvoicePayload(_StripeObject):
    """A Stripe Invoice."""

    subscription: Optional[str] = None
    billing_reason: Optional[str] = None
    status: Optional[str] = None
    amount_paid: Optional[int] = None
    parent: Optional[Dict[str, Any]] = None
    lines: Optional[Dict[str, Any]] = None

    @field_validator("subscription", mode="before")
    def collapse_subscription(cls, v: Any) -> Any:
        """Accept both the subscription id and an expanded subscription object."""
        return _expandable_id(v)

    @property
    def subscription_details(self) -> Dict[str, Any]:
        """The parent.subscription_details block (API version 2025-04-30.basil)."""
        if not self.parent:
            return {}
        return self.parent.get("subscription_details") or {}

    @property
    def subscription_reference(self) -> Optional[str]:
        """The subscription this invoice bills, wherever the API version puts it."""
        if self.subscription:
            return self.subscription
        return _expandable_id(self.subscription_details.get("subscription"))

    @property
    def subscription_metadata(self) -> Dict[str, str]:
        """Metadata snapshot of the subscription, when Stripe attached one to the invoice."""
        metadata = self.subscription_details.get("metadata") or {}
        return {str(key): str(value) for key, value in metadata.items() if value is not None}

    @property
    def is_first_invoice(self) -> bool:
        """Whether this invoice pays for a subscription's first period."""
        return self.billing_reason == "subscription_create"


class SubscriptionPayload(_StripeObject):
    """A Stripe Subscription."""

    status: str
    current_period_start: Optional[int] = None
    current_period_end: Optional[int] = None
    cancel_at_period_end: bool = False
    canceled_at: Optional[int] = None
    items: Optional[Dict[str, Any]] = None

    @property
    def first_item(self) -> Dict[str, Any]:
        """The first subscription item, or an empty dict."""
        if not self.items:
            return {}
        data = self.items.get("data") or []
        return data[0] if data else {}

    @property
    def period_start(self) -> Optional[datetime]:
        """Current period start; read from the first item on API versions that moved it."""
        value = self.current_period_start
        if value is None:
            value = self.first_item.get("current_period_start")
        return from_unix_timestamp(value)

    @property
    def period_end(self) -> Optional[datetime]:
        """Current period end; read from the first item on API versions that moved it."""
        value = self.current_period_end
        if value is None:
            value = self.first_item.get("current_period_end")
        return from_unix_timestamp(value)

    @property
    def canceled_at_datetime(self) -> Optional[datetime]:
        """When the processor canceled the subscription, if it did."""
        return from_unix_timestamp(self.canceled_at)

    @property
    def price_id(self) -> Optional[str]:
        """Price id of the first subscription item."""
        price = self.first_item.get("price")
        return _expandable_id(price) if price else None


PAYLOAD_MODELS: Dict[str, type[_StripeObject]] = {
    EventType.CHECKOUT_SESSION_COMPLETED.value: CheckoutSessionPayload,
    EventType.CHECKOUT_SESSION_ASYNC_PAYMENT_SUCCEEDED.value: CheckoutSessionPayload,
    EventType.CHECKOUT_SESSION_ASYNC_PAYMENT_FAILED.value: CheckoutSessionPayload,
    EventType.CHECKOUT_SESSION_EXPIRED.value: CheckoutSessionPayload,
    EventType.INVOICE_PAYMENT_SUCCEEDED.value: InvoicePayload,
    EventType.SUBSCRIPTION_CREATED.value: SubscriptionPayload,
    EventType.SUBSCRIPTION_UPDATED.value: SubscriptionPayload,
}


class BillingEvent(BaseModel):
    """An authenticated inbound notification from the payment processor.

    ``event_id`` is unique per occurrence, but the same occurrence may be delivered any
    number of times.
    """

    event_id: str = Field(..., min_length=1, description="Processor-assigned event id")
    event_type: str = Field(..., min_length=1, description="Processor event type")
    occurred_at: datetime = Field(..., description="When the processor created the event")
    payload: Dict[str, Any] = Field(default_factory=dict, description="The data.object body")
    previous_attributes: Dict[str, Any] = Field(
        default_factory=dict, description="Changed fields, for *.updated events"
    )

    @model_validator(mode="before")
    @classmethod
    def from_stripe_envelope(cls, data: Any) -> Any:
        """Flatten Stripe's ``{id, type, created, data: {object}}`` envelope."""
        if not isinstance(data, dict) or "event_id" in data:
            return data

        body = data.get("data")
        if not isinstance(body, dict) or not isinstance(body.get("object"), dict):
            raise ValueError("event envelope has no data.object")

        created = data.get("created")
        if not isinstance(created, int) or isinstance(created, bool):
            raise ValueError("event envelope has no integer created timestamp")

        return {
            "event_id": data.get("id"),
            "event_type": data.get("type"),
            "occurred_at": from_unix_timestamp(created),
            "payload": body["object"],
            "previous_attributes": body.get("previous_attributes") or {},
        }

    @property
    def previous_status(self) -> Optional[str]:
        """Processor status before an update, when the update changed it."""
        status = self.previous_attributes.get("status")
        return str(status) if status is not None else None

    def typed_payload(self) -> Optional[_StripeObject]:
        """Validate the payload against the model registered for this event type.

        Returns:
            The typed payload, or None for event types without a payload model.

        Raises:
            pydantic.ValidationError: If the payload does not match its model.
        """
        model = PAYLOAD_MODELS.get(self.event_type)
        if model is None:
            return None
        return model.model_validate(self.payload)


class ProcessingResult(BaseModel):
    """What the processor did with one delivery."""

    outcome: ProcessingOutcome
    event_id: Optional[str] = None
    event_type: Optional[str] = None
    tenant_id: Optional[str] = None
    detail: Optional[str] = None

    @property
    def should_retry(self) -> bool:
        """Whether the processor should redeliver this event."""
        return self.outcome == ProcessingOutcome.RETRY


class WebhookResponse(BaseModel):
    """Body returned to the payment processor. The processor ignores it."""

    received: bool
    outcome: ProcessingOutcome
    event_id: Optional[str] = None
    detail: Optional[str] = None


class BillingEventLogBase(BaseModel):
    """Audit log entry base schema."""

    stripe_event_id: str = Field(..., description="Stripe event id")
    event_type: str = Field(..., description="Stripe event type")
    outcome: ProcessingOutcome = Field(..., description="How the event was handled")
    detail: Optional[str] = Field(None, description="Human readable outcome detail")
    tenant_id: Optional[str] = Field(None, description="Tenant the event resolved to")


class BillingEventLogCreate(BillingEventLogBase):
    """Audit log entry creation schema."""

    model_config = {"use_enum_values": True}

    last_processed_at: datetime


class BillingEventLog(BillingEventLogBase):
    """Audit log entry schema."""

    model_config = {"from_attributes": True}

    delivery_count: int
    last_processed_at: datetime
    created_at: datetime
