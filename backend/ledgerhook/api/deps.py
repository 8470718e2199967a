"""Dependencies that are used in the API endpoints."""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerhook.billing.webhook_processor import BillingWebhookProcessor
from ledgerhook.db.session import get_db


async def get_webhook_processor(db: AsyncSession = Depends(get_db)) -> BillingWebhookProcessor:
    """Webhook processor bound to the request's database session."""
    return BillingWebhookProcessor(db)


__all__ = ["get_db", "get_webhook_processor"]
