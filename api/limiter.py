"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to mount as middleware) and in the route modules
(to apply per-route limits with @limiter.limit()).

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.

RATE_LIMIT_ENABLED=false turns every limit off (the test suite does this).
The one-time-code attempt counter in auth/code_store.py still applies.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

# Per-route limits for the credential endpoints.
REGISTER_LIMIT = "5/minute"
LOGIN_LIMIT = "5/minute"
REFRESH_LIMIT = "10/minute"
FORGOT_PASSWORD_LIMIT = "3/minute"
RESET_PASSWORD_LIMIT = "5/minute"
CHANGE_PASSWORD_LIMIT = "5/minute"

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
    enabled=get_settings().rate_limit_enabled,
)
