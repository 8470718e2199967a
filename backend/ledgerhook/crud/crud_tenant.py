"""CRUD operations for tenants."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerhook import schemas
from ledgerhook.crud._base import CRUDBase
from ledgerhook.models import Tenant


class CRUDTenant(CRUDBase[Tenant, schemas.TenantCreate, schemas.TenantCreate]):
    """CRUD operations for tenants."""

    async def exists(self, db: AsyncSession, *, tenant_id: str) -> bool:
        """Check whether a tenant exists."""
        result = await db.execute(select(Tenant.id).where(Tenant.tenant_id == tenant_id))
        return result.first() is not None


tenant = CRUDTenant(Tenant)
