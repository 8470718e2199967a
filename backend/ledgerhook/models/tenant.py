"""Tenant model."""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from ledgerhook.models._base import Base


class Tenant(Base):
    """A billed account of the dashboard.

    Owned by the account store; the billing processor only reads it to check existence.
    """

    __tablename__ = "tenant"

    tenant_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
