"""Rate limiting configuration using slowapi.

Provides a module-level Limiter instance that ledger routers import for
per-endpoint limits, wired into the FastAPI app in main.py.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from dtr_portal.config import settings

# Individual routes can override with @limiter.limit("N/period").
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.RATE_LIMIT_DEFAULT],
)

# Per-client limit for ledger mutation endpoints
LEDGER_WRITE_LIMIT = "20/minute"
