"""Billing event model for audit trail."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ledgerhook.models._base import Base


class BillingEventLog(Base):
    """Audit log of every authenticated webhook event and how it was handled."""

    __tablename__ = "billing_event"

    stripe_event_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)

    event_type: Mapped[str] = mapped_column(String(100), nullable=False)

    # applied, already_applied, ignored, invariant_violation
    outcome: Mapped[str] = mapped_column(String(50), nullable=False)
    detail: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    tenant_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    delivery_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    last_processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    __table_args__ = (
        Index("idx_billing_events_tenant", "tenant_id"),
        Index("idx_billing_events_type", "event_type"),
    )
