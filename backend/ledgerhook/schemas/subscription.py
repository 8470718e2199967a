"""Subscription schemas."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class SubscriptionStatus(str, Enum):
    """Local lifecycle state of a subscription."""

    PENDING = "pending"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


class SubscriptionBase(BaseModel):
    """Subscription base schema."""

    subscription_id: str = Field(..., description="Stripe subscription id")
    tenant_id: str = Field(..., description="Tenant that purchased the subscription")
    plan_id: Optional[str] = Field(None, description="Purchased plan")
    credit_amount: Optional[int] = Field(None, ge=0, description="Credits granted per period")


class SubscriptionCreate(SubscriptionBase):
    """Subscription creation schema."""

    model_config = {"use_enum_values": True}

    status: SubscriptionStatus = SubscriptionStatus.PENDING
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    canceled_at: Optional[datetime] = None
    stripe_customer_id: Optional[str] = None
    stripe_price_id: Optional[str] = None
    last_event_at: Optional[datetime] = None
    last_event_type: Optional[str] = None
    subscription_metadata: Optional[Dict[str, Any]] = None


class SubscriptionUpdate(BaseModel):
    """Subscription update schema."""

    model_config = {"use_enum_values": True}

    plan_id: Optional[str] = None
    credit_amount: Optional[int] = None
    status: Optional[SubscriptionStatus] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: Optional[bool] = None
    canceled_at: Optional[datetime] = None
    stripe_customer_id: Optional[str] = None
    stripe_price_id: Optional[str] = None
    last_event_at: Optional[datetime] = None
    last_event_type: Optional[str] = None
    subscription_metadata: Optional[Dict[str, Any]] = None


class Subscription(SubscriptionBase):
    """Subscription schema."""

    model_config = {"from_attributes": True}

    id: UUID
    status: SubscriptionStatus
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    canceled_at: Optional[datetime] = None
    stripe_customer_id: Optional[str] = None
    stripe_price_id: Optional[str] = None
    last_event_at: Optional[datetime] = None
    last_event_type: Optional[str] = None
    created_at: datetime
    modified_at: datetime
