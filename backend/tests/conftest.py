"""Common test fixtures and configuration for pytest.

Settings are read from the environment when ``ledgerhook`` is first imported, so the test
environment is set up here before anything imports it.
"""

import os

os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["SQLALCHEMY_ASYNC_DATABASE_URI"] = "sqlite+aiosqlite:///:memory:"
os.environ["LOCAL_DEVELOPMENT"] = "true"
os.environ["STORAGE_RETRY_ATTEMPTS"] = "2"

# Import all fixtures so they are automatically available for all tests
from tests.fixtures.common import (  # noqa: E402
    db_engine,
    db_session,
    other_tenant,
    tenant,
)

__all__ = ["db_engine", "db_session", "other_tenant", "tenant"]
