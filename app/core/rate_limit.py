from __future__ import annotations

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from app.core.config import settings


def _request_key(request: Request) -> str:
    identity = (request.headers.get("x-user-email") or "").strip()
    if identity:
        return f"user:{identity}"
    return get_remote_address(request)


limiter = Limiter(key_func=_request_key, enabled=settings.rate_limit_enabled)


def rate_limit():
    """Per-caller request throttle, separate from the daily analysis quota."""
    if settings.rate_limit_enabled:
        return limiter.limit(settings.rate_limit)

    def decorator(func):
        return func

    return decorator
