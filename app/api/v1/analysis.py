from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile, status
from fastapi.concurrency import run_in_threadpool

from app.core.config import settings
from app.core.rate_limit import rate_limit
from app.core.security import current_identity
from app.core.usage_limit import UsageLimiter, get_usage_limiter
from app.parsing.models import ExtractedText
from app.parsing.parse import TextExtractionError, extract_upload_text
from app.schemas.analysis import AnalyzeRequest, AnalyzeResponse, RemainingUses
from app.schemas.usage import Decision
from app.services.analysis import run_analysis
from app.services.llm import AnalysisLLMError

router = APIRouter()
logger = logging.getLogger(__name__)

_READ_CHUNK = 1024 * 64


def _quota_exceeded_message(decision: Decision, quota: int, window_hours: int) -> str:
    when = "tomorrow"
    if decision.reset_at is not None:
        when = f"after {decision.reset_at.astimezone(timezone.utc):%Y-%m-%d %H:%M} UTC"
    return (
        f"Rate limit exceeded. You can perform {quota} analyses per {window_hours}-hour period. "
        f"Please try again {when}."
    )


@router.get("/rate-limit/check", response_model=Decision, response_model_exclude_none=True)
def rate_limit_check(
    identity: str = Depends(current_identity),
    limiter: UsageLimiter = Depends(get_usage_limiter),
):
    return limiter.evaluate(identity)


@router.post("/extract-text", response_model=ExtractedText, response_model_exclude_none=True)
@rate_limit()
async def extract_text(
    request: Request,
    file: UploadFile = File(...),
    identity: str = Depends(current_identity),
):
    _ = request
    filename = file.filename or "uploaded-file"

    chunks: list[bytes] = []
    total = 0
    while True:
        chunk = await file.read(_READ_CHUNK)
        if not chunk:
            break
        total += len(chunk)
        if total > settings.max_upload_bytes:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail=f"File too large. Maximum allowed size is {settings.max_upload_bytes // (1024 * 1024)} MB.",
            )
        chunks.append(chunk)
    payload = b"".join(chunks)

    try:
        return await run_in_threadpool(
            extract_upload_text,
            filename=filename,
            content_type=file.content_type,
            content=payload,
        )
    except TextExtractionError as exc:
        logger.info("extract_text_rejected identity=%s file=%s: %s", identity, filename, exc)
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc


@router.post("/analyze", response_model=AnalyzeResponse)
@rate_limit()
def analyze(
    request: Request,
    payload: AnalyzeRequest,
    identity: str = Depends(current_identity),
    limiter: UsageLimiter = Depends(get_usage_limiter),
):
    _ = request
    decision = limiter.evaluate(identity)
    if not decision.allowed:
        window_hours = int(limiter.window.total_seconds() // 3600)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "error": _quota_exceeded_message(decision, limiter.quota, window_hours),
                "rateLimit": decision.model_dump(mode="json", by_alias=True, exclude_none=True),
            },
        )

    if not payload.resume_text.strip() or not payload.job_description.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Resume text and job description are required",
        )

    try:
        analysis = run_analysis(payload.resume_text, payload.job_description)
    except AnalysisLLMError as exc:
        detail: str | dict[str, str] = str(exc)
        if exc.raw_response is not None:
            detail = {"error": str(exc), "rawResponse": exc.raw_response}
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail) from exc

    limiter.record(identity)
    return AnalyzeResponse(
        analysis=analysis,
        timestamp=datetime.now(timezone.utc),
        rate_limit=RemainingUses(remaining=decision.remaining),
    )
