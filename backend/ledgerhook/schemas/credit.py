"""Credit ledger schemas."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class GrantStatus(str, Enum):
    """Result of a grant attempt."""

    GRANTED = "granted"
    ALREADY_GRANTED = "already_granted"


class CreditGrantCreate(BaseModel):
    """Credit grant creation schema."""

    grant_key: str = Field(..., min_length=64, max_length=64)
    tenant_id: str
    amount: int = Field(..., gt=0)
    purchase_reference: str
    period_reference: str
    source_event_id: str
    source_event_type: str


class CreditGrant(CreditGrantCreate):
    """Credit grant schema."""

    model_config = {"from_attributes": True}

    id: UUID
    created_at: datetime


class CreditGrantResult(BaseModel):
    """Outcome of ``grant_credits``."""

    status: GrantStatus
    grant_key: str
    tenant_id: str
    amount: int
    balance: Optional[int] = Field(
        None, description="Balance right after the grant; None when nothing was applied"
    )

    @property
    def applied(self) -> bool:
        """Whether this call changed the balance."""
        return self.status == GrantStatus.GRANTED


class CreditBalance(BaseModel):
    """Credit balance schema."""

    model_config = {"from_attributes": True}

    tenant_id: str
    credits_available: int
    modified_at: datetime
