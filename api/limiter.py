"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (app.state.limiter) and in the route modules
(to apply per-route limits with @limiter.limit()). No SlowAPIMiddleware:
only the decorated auth routes are limited.

Using a single shared instance ensures all routes share the same in-memory
counter store. Per-route limit strings come from Settings so they can be
tuned per deployment without code changes.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_limit() -> str:
    return get_settings().login_rate_limit


def signup_limit() -> str:
    return get_settings().signup_rate_limit


def forgot_password_limit() -> str:
    return get_settings().forgot_password_rate_limit
