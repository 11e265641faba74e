from __future__ import annotations

from fastapi import Depends, Header, HTTPException, status

from app.core.config import settings
from app.core.usage_limit import UsageLimiter, get_usage_limiter


def check_api_key(x_api_key: str | None) -> None:
    if not settings.api_key:
        return
    if x_api_key != settings.api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Please provide a valid API key.",
        )


def current_identity(
    x_user_email: str | None = Header(default=None, alias="X-User-Email"),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> str:
    """Verified user email forwarded by the upstream auth layer.

    The value is trusted as-is; only presence is checked here.
    """
    check_api_key(x_api_key)
    identity = (x_user_email or "").strip()
    if not identity:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return identity


def require_admin(
    identity: str = Depends(current_identity),
    limiter: UsageLimiter = Depends(get_usage_limiter),
) -> str:
    # Nobody is admin while ADMIN_EMAIL is unset.
    if not limiter.is_admin(identity):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return identity
