"""API routes for the FastAPI application."""

from ledgerhook.api.router import TrailingSlashRouter
from ledgerhook.api.v1.endpoints import health, webhooks

# Use our custom router that handles trailing slashes
api_router = TrailingSlashRouter()
api_router.include_router(health.router, prefix="/health", tags=["health"])
api_router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
