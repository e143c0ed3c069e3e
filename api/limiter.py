"""
api/limiter.py -- Rate limiter gate for the sensitive auth entry points.

One slowapi Limiter per application, attached to app.state.limiter so
SlowAPIMiddleware can locate it. Building it per app (rather than at module
import) keeps counters and per-route limits from leaking between apps that
were configured differently, e.g. in tests.

Counters live in the `limits` storage named by RATE_LIMIT_STORAGE_URI:
memory:// for a single worker, redis://host:6379 when several workers must
share counts. Attempts are counted per client address, per route, per window.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import Settings

LOGIN_LIMIT_MESSAGE = "Too many login attempts."
REGISTER_LIMIT_MESSAGE = "Too many registration attempts."


def limit_string(max_attempts: int, window_seconds: int) -> str:
    """Express (max, window) in `limits` notation, e.g. '5 per 900 seconds'."""
    return f"{max_attempts} per {window_seconds} seconds"


def build_limiter(settings: Settings) -> Limiter:
    return Limiter(
        key_func=get_remote_address,
        storage_uri=settings.rate_limit_storage_uri,
        enabled=settings.rate_limit_enabled,
    )


def login_limit(settings: Settings) -> str:
    return limit_string(settings.login_rate_max, settings.login_rate_window_seconds)


def register_limit(settings: Settings) -> str:
    return limit_string(settings.register_rate_max, settings.register_rate_window_seconds)
