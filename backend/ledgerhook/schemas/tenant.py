"""Tenant schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class TenantBase(BaseModel):
    """Tenant base schema."""

    tenant_id: str = Field(..., min_length=1, description="Account identifier")
    name: str = Field("", description="Display name")


class TenantCreate(TenantBase):
    """Tenant creation schema."""

    pass


class Tenant(TenantBase):
    """Tenant schema."""

    model_config = {"from_attributes": True}

    id: UUID
    created_at: datetime
