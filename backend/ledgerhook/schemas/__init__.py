"""Schemas for the application."""

from .billing_event import (
    BillingEvent,
    BillingEventLog,
    BillingEventLogCreate,
    CheckoutSessionPayload,
    EventType,
    InvoicePayload,
    ProcessingOutcome,
    ProcessingResult,
    SubscriptionPayload,
    WebhookResponse,
)
from .credit import (
    CreditBalance,
    CreditGrant,
    CreditGrantCreate,
    CreditGrantResult,
    GrantStatus,
)
from .subscription import (
    Subscription,
    SubscriptionCreate,
    SubscriptionStatus,
    SubscriptionUpdate,
)
from .tenant import Tenant, TenantCreate

# flake8: noqa: F401
