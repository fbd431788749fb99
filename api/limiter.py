"""
api/limiter.py -- Shared slowapi rate limiter instance.

Imported by api/main.py (mounted as app.state.limiter for SlowAPIMiddleware)
and by api/routes/v1/auth.py (per-route @limiter.limit() on POST /auth/login).

One shared instance means one counter store. A limiter per module would keep
isolated counters and the login limit would never trigger.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
