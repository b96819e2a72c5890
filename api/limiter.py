"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to mount as middleware) and in the route modules
that start or finish WebAuthn ceremonies (to apply per-route limits with
@limiter.limit(ceremony_limit)).

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def ceremony_limit() -> str:
    """Per-IP limit for challenge and verify endpoints, e.g. "20/minute"."""
    return get_settings().ceremony_rate_limit
