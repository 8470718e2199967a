"""Models for the application."""

from ._base import Base
from .billing_event import BillingEventLog
from .credit_balance import CreditBalance
from .credit_grant import CreditGrant
from .subscription import Subscription
from .tenant import Tenant

# flake8: noqa: F401
