from __future__ import annotations

import json
import logging
import re
import time
from functools import lru_cache
from typing import Any

from openai import OpenAI

from app.core.config import settings

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", flags=re.IGNORECASE)


class AnalysisLLMError(RuntimeError):
    def __init__(self, message: str, *, code: str = "llm_unavailable", raw_response: str | None = None):
        super().__init__(message)
        self.code = code
        self.raw_response = raw_response


def _looks_like_placeholder(value: str) -> bool:
    lower = value.strip().lower()
    return lower.startswith("your_") or lower.startswith("replace_") or lower in {"changeme", "todo"}


def llm_enabled() -> bool:
    api_key = (settings.openai_api_key or "").strip()
    return bool(api_key) and not _looks_like_placeholder(api_key)


@lru_cache(maxsize=1)
def _client() -> OpenAI:
    return OpenAI(
        api_key=(settings.openai_api_key or "").strip(),
        timeout=settings.openai_timeout_s,
    )


def _strip_fences(text: str) -> str:
    return _FENCE_RE.sub("", text.strip())


def json_completion_required(
    *,
    system_prompt: str,
    user_prompt: str,
    temperature: float = 0.3,
    max_output_tokens: int = 4000,
) -> dict[str, Any]:
    if not llm_enabled():
        raise AnalysisLLMError("OpenAI API key not configured", code="llm_disabled")

    started = time.perf_counter()
    try:
        response = _client().chat.completions.create(
            model=settings.openai_model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=temperature,
            max_tokens=max_output_tokens,
        )
    except Exception as exc:  # noqa: BLE001 - provider errors surface as one type
        logger.warning("analysis_llm_failed model=%s prompt_len=%s: %s", settings.openai_model, len(user_prompt), exc)
        raise AnalysisLLMError(str(exc) or "Analysis request failed", code="llm_exception") from exc

    content = response.choices[0].message.content if response.choices else ""
    latency_ms = int((time.perf_counter() - started) * 1000)
    if not content:
        logger.warning("analysis_llm_empty model=%s latency_ms=%s", settings.openai_model, latency_ms)
        raise AnalysisLLMError("No analysis generated", code="empty_response")

    try:
        parsed = json.loads(_strip_fences(content))
    except json.JSONDecodeError as exc:
        logger.error("analysis_llm_invalid_json model=%s latency_ms=%s: %s", settings.openai_model, latency_ms, exc)
        raise AnalysisLLMError("Failed to parse analysis response", code="invalid_json", raw_response=content) from exc

    if not isinstance(parsed, dict):
        raise AnalysisLLMError("Failed to parse analysis response", code="invalid_json", raw_response=content)

    logger.info("analysis_llm_success model=%s latency_ms=%s", settings.openai_model, latency_ms)
    return parsed
