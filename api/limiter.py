"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to mount as middleware) and in route modules that
apply per-route limits with @limiter.limit().

This is the coarse per-IP request cap. Failed-login lockout per
(IP, email) lives in auth/throttle.py and is independent of it.

Using a single shared instance ensures all routes share the same in-memory
counter store.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
