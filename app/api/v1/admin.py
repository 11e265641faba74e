from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, status

from app.core.security import require_admin
from app.core.usage_limit import UsageConfigValidationError, UsageLimiter, get_usage_limiter
from app.core.usage_store import StorageUnavailable
from app.schemas.usage import AdminStatusResponse, AdminUpdateResponse

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/admin/status", response_model=AdminStatusResponse)
def admin_status(
    _: str = Depends(require_admin),
    limiter: UsageLimiter = Depends(get_usage_limiter),
):
    usage = limiter.list_usage()
    return AdminStatusResponse(
        admin_data=limiter.get_admin_config(),
        usage_data=usage,
        total_users=len(usage),
        usage_report=limiter.usage_report(),
    )


@router.post("/admin/update", response_model=AdminUpdateResponse)
def admin_update(
    payload: Any = Body(...),
    admin: str = Depends(require_admin),
    limiter: UsageLimiter = Depends(get_usage_limiter),
):
    try:
        updated = limiter.update_admin_config(payload)
    except UsageConfigValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except StorageUnavailable as exc:
        logger.error("admin_update_failed admin=%s: %s", admin, exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to save admin settings",
        ) from exc
    return AdminUpdateResponse(success=True, message="Admin settings updated successfully", admin_data=updated)
