"""Main module of the FastAPI application.

Serves the Stripe webhook endpoint and a health probe. Settings are validated at import,
so a missing webhook secret stops the process before it accepts a request.
"""

import os
import subprocess
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError

from ledgerhook.api.middleware import (
    add_request_id,
    exception_logging_middleware,
    ledgerhook_exception_handler,
    log_requests,
    not_found_exception_handler,
    validation_exception_handler,
)
from ledgerhook.api.router import TrailingSlashRouter
from ledgerhook.api.v1.api import api_router
from ledgerhook.core.config import settings
from ledgerhook.core.exceptions import LedgerhookException, NotFoundException
from ledgerhook.core.logging import logger
from ledgerhook.db.session import async_engine


def run_migrations() -> None:
    """Upgrade the billing schema to the latest alembic revision."""
    logger.info("Running alembic migrations...")
    backend_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    env = {**os.environ, "PYTHONPATH": backend_dir}
    subprocess.run(["alembic", "upgrade", "head"], check=True, cwd=backend_dir, env=env)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events.

    Runs alembic migrations when enabled and releases the connection pool on shutdown.
    """
    if settings.RUN_ALEMBIC_MIGRATIONS:
        run_migrations()

    logger.with_context(
        signature_tolerance=settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
        processing_timeout=settings.WEBHOOK_PROCESSING_TIMEOUT_SECONDS,
        stripe_lookup_enabled=bool(settings.STRIPE_SECRET_KEY),
    ).info("Billing webhook processor ready")

    yield

    await async_engine.dispose()


# Stripe posts to the configured URL verbatim, so slash redirects are disabled
app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url="/openapi.json",
    lifespan=lifespan,
    router=TrailingSlashRouter(),
    redirect_slashes=False,
)

app.include_router(api_router)

app.middleware("http")(add_request_id)
app.middleware("http")(log_requests)
app.middleware("http")(exception_logging_middleware)

app.exception_handler(RequestValidationError)(validation_exception_handler)
app.exception_handler(ValidationError)(validation_exception_handler)
app.exception_handler(NotFoundException)(not_found_exception_handler)
app.exception_handler(LedgerhookException)(ledgerhook_exception_handler)
