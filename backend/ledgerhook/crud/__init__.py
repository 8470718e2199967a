"""CRUD operations for the application."""

from .crud_billing_event import billing_event
from .crud_credit_balance import credit_balance
from .crud_credit_grant import credit_grant
from .crud_subscription import subscription
from .crud_tenant import tenant

# flake8: noqa: F401
