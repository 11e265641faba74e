from __future__ import annotations

import logging
import re
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping

from app.core.config import settings
from app.core.usage_store import (
    StorageUnavailable,
    UsageStorage,
    UsageTable,
    get_usage_storage,
    load_admin,
    load_usage,
)
from app.schemas.usage import UNLIMITED, AdminConfig, Decision, UsageRecord, UsageReportRow

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

_ADMIN_FIELDS = {
    "rateLimitEnabled": "rate_limit_enabled",
    "rate_limit_enabled": "rate_limit_enabled",
    "whitelistedUsers": "allow_list",
    "allow_list": "allow_list",
}


class UsageConfigValidationError(ValueError):
    pass


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_time_until_reset(seconds: float) -> str:
    if seconds <= 0:
        return "Reset now"
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    return f"{hours}h {minutes}m"


def validate_admin_update(partial: Mapping[str, Any]) -> dict[str, Any]:
    """Check an admin payload and map it onto ``AdminConfig`` field names.

    Raises ``UsageConfigValidationError`` on the first problem found.
    """
    if not isinstance(partial, Mapping):
        raise UsageConfigValidationError("Admin settings payload must be an object")

    changes: dict[str, Any] = {}
    for key, value in partial.items():
        field = _ADMIN_FIELDS.get(key)
        if field is None:
            raise UsageConfigValidationError(f"Unknown admin setting: {key}")

        if field == "rate_limit_enabled":
            if not isinstance(value, bool):
                raise UsageConfigValidationError("rateLimitEnabled must be a boolean")
            changes[field] = value
            continue

        if not isinstance(value, list):
            raise UsageConfigValidationError("whitelistedUsers must be an array")
        seen: list[str] = []
        for email in value:
            if not isinstance(email, str) or not EMAIL_PATTERN.match(email):
                raise UsageConfigValidationError(f"Invalid email format: {email}")
            if email not in seen:
                seen.append(email)
        changes[field] = seen
    return changes


class UsageLimiter:
    """Per-identity daily quota backed by a ``UsageStorage``.

    ``evaluate`` is read-only and fails open when the store cannot be read.
    ``record`` is called only after the gated work succeeded; bookkeeping
    faults are logged and swallowed.

    Writes go through ``_write_lock`` so two ``record`` calls in this process
    cannot lose an update. Separate processes sharing the same files still can.
    """

    def __init__(
        self,
        storage: UsageStorage,
        *,
        admin_email: str | None,
        quota: int = 3,
        window: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.storage = storage
        self.admin_email = admin_email
        self.quota = quota
        self.window = window
        self._clock = clock
        self._write_lock = threading.Lock()

    def is_admin(self, identity: str) -> bool:
        if not self.admin_email:
            return False
        return identity == self.admin_email

    def _expired(self, record: UsageRecord, now: datetime) -> bool:
        return now - record.window_start >= self.window

    def _is_exempt(self, identity: str, config: AdminConfig) -> bool:
        return self.is_admin(identity) or identity in config.allow_list or not config.rate_limit_enabled

    def get_admin_config(self) -> AdminConfig:
        result = load_admin(self.storage)
        if not result.ok:
            logger.warning("admin_config_read_failed falling back to defaults: %s", result.error)
        return result.value_or(AdminConfig())

    def evaluate(self, identity: str) -> Decision:
        if self._is_exempt(identity, self.get_admin_config()):
            return Decision(allowed=True, remaining=UNLIMITED)

        result = load_usage(self.storage)
        if not result.ok:
            logger.warning("usage_check_failed identity=%s allowing request: %s", identity, result.error)
            return Decision(allowed=True, remaining=UNLIMITED)

        record = result.value_or({}).get(identity)
        now = self._clock()
        if record is None or self._expired(record, now):
            return Decision(allowed=True, remaining=self.quota - 1)
        if record.count < self.quota:
            return Decision(allowed=True, remaining=self.quota - 1 - record.count)
        return Decision(allowed=False, remaining=0, reset_at=record.window_start + self.window)

    def record(self, identity: str) -> None:
        if self._is_exempt(identity, self.get_admin_config()):
            return

        with self._write_lock:
            try:
                table = self.storage.read_usage()
                now = self._clock()
                current = table.get(identity)
                if current is None or self._expired(current, now):
                    table[identity] = UsageRecord(count=1, window_start=now)
                else:
                    table[identity] = UsageRecord(count=current.count + 1, window_start=current.window_start)
                self.storage.write_usage(table)
            except StorageUnavailable as exc:
                logger.error("usage_record_failed identity=%s: %s", identity, exc)
                return
        logger.info("usage_recorded identity=%s count=%s", identity, table[identity].count)

    def update_admin_config(self, partial: Mapping[str, Any]) -> AdminConfig:
        changes = validate_admin_update(partial)
        with self._write_lock:
            updated = self.get_admin_config().model_copy(update=changes)
            self.storage.write_admin(updated)
        logger.info(
            "admin_config_updated rate_limit_enabled=%s allow_list=%s",
            updated.rate_limit_enabled,
            len(updated.allow_list),
        )
        return updated

    def list_usage(self) -> UsageTable:
        result = load_usage(self.storage)
        if not result.ok:
            logger.warning("usage_list_failed: %s", result.error)
        return result.value_or({})

    def usage_report(self, now: datetime | None = None) -> list[UsageReportRow]:
        current = now or self._clock()
        rows: list[UsageReportRow] = []
        for identity, record in self.list_usage().items():
            reset_at = record.window_start + self.window
            seconds_left = (reset_at - current).total_seconds()
            rows.append(
                UsageReportRow(
                    identity=identity,
                    count=record.count,
                    quota=self.quota,
                    window_start=record.window_start,
                    reset_at=reset_at,
                    resets_in_seconds=max(0, int(seconds_left)),
                    time_until_reset=format_time_until_reset(seconds_left),
                )
            )
        return rows


_limiter: UsageLimiter | None = None
_limiter_lock = threading.Lock()


def get_usage_limiter() -> UsageLimiter:
    global _limiter
    with _limiter_lock:
        if _limiter is None:
            _limiter = UsageLimiter(
                get_usage_storage(),
                admin_email=settings.admin_email,
                quota=settings.usage_quota,
                window=timedelta(hours=settings.usage_window_hours),
            )
        return _limiter
