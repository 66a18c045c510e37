"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to mount as middleware) and in route modules that
apply per-route limits with @limiter.limit() -- currently only POST /auth/login.

A single shared instance means every route uses the same in-memory counter
store. Separate instances per module would each keep their own counters.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
