from fastapi import APIRouter, Depends

from app.core.usage_limit import UsageLimiter, get_usage_limiter
from app.core.usage_store import load_admin
from app.services.llm import llm_enabled
from app.services.ocr import ocr_available

router = APIRouter()


@router.get("/health", summary="Health Check", description="Report service status and which collaborators are configured.")
def health_check(limiter: UsageLimiter = Depends(get_usage_limiter)):
    store_ok = load_admin(limiter.storage).ok
    return {
        "status": "healthy",
        "usage_store": "ok" if store_ok else "unavailable",
        "analysis_configured": llm_enabled(),
        "ocr_configured": ocr_available(),
    }
