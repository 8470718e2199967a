"""Credit balance model."""

from sqlalchemy import ForeignKey, Integer
from sqlalchemy.orm import Mapped, mapped_column

from ledgerhook.models._base import Base


class CreditBalance(Base):
    """Running balance of purchasable usage credits, one row per tenant.

    The billing processor only ever adds to it; spending happens elsewhere.
    """

    __tablename__ = "credit_balance"

    tenant_id: Mapped[str] = mapped_column(
        ForeignKey("tenant.tenant_id", ondelete="RESTRICT"), unique=True, nullable=False
    )
    credits_available: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
