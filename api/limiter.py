"""
api/limiter.py -- Shared slowapi rate limiter instance.

Imported by api/main.py (attached to app.state and mounted as middleware) and
by api/routes/v1/auth.py (per-route limits on login and register).

One shared instance means one in-memory counter store. A limiter created per
module would count separately and the limits would never trigger.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_limit() -> str:
    """Current login/register limit, e.g. "10/minute". Read at request time."""
    return get_settings().login_rate_limit
