"""Subscription model."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from ledgerhook.models._base import Base


class Subscription(Base):
    """Local mirror of one recurring-billing relationship at the payment processor."""

    __tablename__ = "subscription"

    # Processor-owned identifier
    subscription_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)

    tenant_id: Mapped[str] = mapped_column(
        ForeignKey("tenant.tenant_id", ondelete="RESTRICT"), nullable=False
    )
    plan_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Credits granted for each paid billing period, stored when checkout starts
    credit_amount: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # pending, active, past_due, canceled
    status: Mapped[str] = mapped_column(String(50), default="pending", nullable=False)

    current_period_start: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=False), nullable=True
    )
    current_period_end: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=False), nullable=True
    )
    cancel_at_period_end: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    canceled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=False), nullable=True
    )

    stripe_customer_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    stripe_price_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Watermark of the newest subscription event applied to status and flags
    last_event_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=False), nullable=True
    )
    last_event_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    subscription_metadata: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    __table_args__ = (Index("idx_subscription_tenant", "tenant_id"),)
