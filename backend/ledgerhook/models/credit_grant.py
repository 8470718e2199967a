"""Credit grant model."""

from sqlalchemy import ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from ledgerhook.models._base import Base


class CreditGrant(Base):
    """One applied batch of credits.

    Written in the same transaction as the balance increment and never changed afterwards.
    The unique grant key is the only record of whether a batch was already applied.
    """

    __tablename__ = "credit_grant"

    grant_key: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)

    tenant_id: Mapped[str] = mapped_column(
        ForeignKey("tenant.tenant_id", ondelete="RESTRICT"), nullable=False
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)

    # Checkout session id or subscription id
    purchase_reference: Mapped[str] = mapped_column(String(255), nullable=False)
    # "one_time", "initial" or "invoice:<id>"
    period_reference: Mapped[str] = mapped_column(String(255), nullable=False)

    source_event_id: Mapped[str] = mapped_column(String(255), nullable=False)
    source_event_type: Mapped[str] = mapped_column(String(100), nullable=False)

    __table_args__ = (Index("idx_credit_grant_tenant", "tenant_id"),)
