"""Health check endpoint."""

from ledgerhook.api.router import TrailingSlashRouter

router = TrailingSlashRouter()


@router.get("")
async def health_check() -> dict[str, str]:
    """Liveness probe. Does not touch the database or Stripe."""
    return {"status": "healthy"}
