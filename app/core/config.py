from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()

def _get_env(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value


def _get_env_bool(name: str, default: bool) -> bool:
    raw = _get_env(name, None)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _get_env_int(name: str, default: int) -> int:
    raw = _get_env(name, None)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _get_env_list(name: str, default: list[str]) -> tuple[str, ...]:
    raw = _get_env(name, None)
    if raw is None:
        return tuple(default)
    values = [item.strip() for item in raw.split(",")]
    clean = [item for item in values if item]
    return tuple(clean) if clean else tuple(default)


@dataclass(frozen=True)
class Settings:
    api_key: str | None
    admin_email: str | None
    usage_data_dir: str
    usage_quota: int
    usage_window_hours: int
    rate_limit: str
    rate_limit_enabled: bool
    log_level: str
    sentry_dsn: str | None
    cors_allowed_origins: tuple[str, ...]
    cors_allow_credentials: bool
    max_upload_bytes: int
    openai_api_key: str | None
    openai_model: str
    openai_timeout_s: float
    analysis_max_tokens: int
    mistral_api_key: str | None
    ocr_model: str


settings = Settings(
    api_key=_get_env("API_KEY"),
    admin_email=(_get_env("ADMIN_EMAIL") or "").strip() or None,
    usage_data_dir=_get_env("USAGE_DATA_DIR", "data") or "data",
    usage_quota=max(1, _get_env_int("USAGE_QUOTA", 3)),
    usage_window_hours=max(1, _get_env_int("USAGE_WINDOW_HOURS", 24)),
    rate_limit=_get_env("RATE_LIMIT", "60/minute") or "60/minute",
    rate_limit_enabled=_get_env_bool("RATE_LIMIT_ENABLED", True),
    log_level=_get_env("LOG_LEVEL", "INFO") or "INFO",
    sentry_dsn=_get_env("SENTRY_DSN"),
    cors_allowed_origins=_get_env_list(
        "CORS_ALLOWED_ORIGINS",
        [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
            "http://localhost:5173",
        ],
    ),
    cors_allow_credentials=_get_env_bool("CORS_ALLOW_CREDENTIALS", False),
    max_upload_bytes=_get_env_int("MAX_UPLOAD_BYTES", 10 * 1024 * 1024),
    openai_api_key=_get_env("OPENAI_API_KEY"),
    openai_model=(_get_env("AI_MODEL") or _get_env("OPENAI_MODEL", "gpt-4") or "gpt-4").strip(),
    openai_timeout_s=float(_get_env("OPENAI_TIMEOUT_S", "60") or "60"),
    analysis_max_tokens=_get_env_int("ANALYSIS_MAX_TOKENS", 4000),
    mistral_api_key=_get_env("MISTRAL_API_KEY"),
    ocr_model=_get_env("OCR_MODEL", "mistral-ocr-latest") or "mistral-ocr-latest",
)
