"""Shared API dependencies: single import point for all routers.

Re-exports database, client and authentication dependencies so that router
modules can import everything they need from one place::

    from finwise.api.deps import get_db, get_current_user
"""

from finwise.auth.dependencies import get_current_user
from finwise.billing.dependencies import (
    get_current_subscription,
    get_status_subscription,
    require_active_access,
)
from finwise.billing.rate_limit import billing_rate_limit, get_rate_limiter
from finwise.billing.stripe_client import get_stripe_client
from finwise.database import get_db, get_session_factory

__all__ = [
    "get_db",
    "get_session_factory",
    "get_current_user",
    "get_current_subscription",
    "get_status_subscription",
    "require_active_access",
    "get_stripe_client",
    "get_rate_limiter",
    "billing_rate_limit",
]
