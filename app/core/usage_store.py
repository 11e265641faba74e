from __future__ import annotations

import json
import logging
import os
import stat
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Generic, Protocol, TypeVar

from pydantic import ValidationError

from app.core.config import settings
from app.schemas.usage import AdminConfig, UsageRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")

UsageTable = dict[str, UsageRecord]

USAGE_FILENAME = "usage.json"
ADMIN_FILENAME = "admin.json"
DEFAULT_FILE_MODE = 0o644


class StorageUnavailable(RuntimeError):
    """The backing record is missing, unreadable or does not decode."""


@dataclass(frozen=True)
class ReadResult(Generic[T]):
    value: T | None = None
    error: StorageUnavailable | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def value_or(self, fallback: T) -> T:
        if self.error is not None or self.value is None:
            return fallback
        return self.value


class UsageStorage(Protocol):
    def read_usage(self) -> UsageTable: ...

    def write_usage(self, table: UsageTable) -> None: ...

    def read_admin(self) -> AdminConfig: ...

    def write_admin(self, config: AdminConfig) -> None: ...


def _attempt(reader: Callable[[], T]) -> ReadResult[T]:
    try:
        return ReadResult(value=reader())
    except StorageUnavailable as exc:
        return ReadResult(error=exc)


def load_usage(storage: UsageStorage) -> ReadResult[UsageTable]:
    return _attempt(storage.read_usage)


def load_admin(storage: UsageStorage) -> ReadResult[AdminConfig]:
    return _attempt(storage.read_admin)


def _dump_usage(table: UsageTable) -> dict[str, Any]:
    return {identity: record.model_dump(mode="json", by_alias=True) for identity, record in table.items()}


def _parse_usage(raw: Any) -> UsageTable:
    if not isinstance(raw, dict):
        raise StorageUnavailable("usage table must be a JSON object")
    try:
        return {str(identity): UsageRecord.model_validate(entry) for identity, entry in raw.items()}
    except ValidationError as exc:
        raise StorageUnavailable(f"usage table is malformed: {exc.error_count()} error(s)") from exc


def _parse_admin(raw: Any) -> AdminConfig:
    if not isinstance(raw, dict):
        raise StorageUnavailable("admin config must be a JSON object")
    try:
        return AdminConfig.model_validate(raw)
    except ValidationError as exc:
        raise StorageUnavailable(f"admin config is malformed: {exc.error_count()} error(s)") from exc


# mkstemp creates 0600 files; replaced documents keep the previous mode.
def _existing_mode(path: Path) -> int:
    try:
        return stat.S_IMODE(path.stat().st_mode)
    except FileNotFoundError:
        return DEFAULT_FILE_MODE


class JsonFileUsageStorage:
    """Whole-document JSON files under ``data_dir``.

    Every call re-reads or rewrites the full file; nothing is cached in memory.
    Missing files are created with defaults on first touch.
    """

    def __init__(self, data_dir: str | os.PathLike[str]):
        self.data_dir = Path(data_dir)
        self.usage_path = self.data_dir / USAGE_FILENAME
        self.admin_path = self.data_dir / ADMIN_FILENAME

    def _ensure_files(self) -> None:
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            if not self.usage_path.exists():
                self._write_json(self.usage_path, {})
            if not self.admin_path.exists():
                self._write_json(self.admin_path, AdminConfig().model_dump(mode="json", by_alias=True))
        except OSError as exc:
            raise StorageUnavailable(f"cannot initialise data dir '{self.data_dir}': {exc}") from exc

    def _read_json(self, path: Path) -> Any:
        self._ensure_files()
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            logger.warning("usage_store_read_failed path=%s: %s", path, exc)
            raise StorageUnavailable(f"cannot read '{path}': {exc}") from exc

    def _write_json(self, path: Path, payload: Any) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2)
            os.chmod(tmp_name, _existing_mode(path))
            os.replace(tmp_name, path)
        except OSError:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def _write(self, path: Path, payload: Any) -> None:
        self._ensure_files()
        try:
            self._write_json(path, payload)
        except OSError as exc:
            logger.warning("usage_store_write_failed path=%s: %s", path, exc)
            raise StorageUnavailable(f"cannot write '{path}': {exc}") from exc

    def read_usage(self) -> UsageTable:
        return _parse_usage(self._read_json(self.usage_path))

    def write_usage(self, table: UsageTable) -> None:
        self._write(self.usage_path, _dump_usage(table))

    def read_admin(self) -> AdminConfig:
        return _parse_admin(self._read_json(self.admin_path))

    def write_admin(self, config: AdminConfig) -> None:
        self._write(self.admin_path, config.model_dump(mode="json", by_alias=True))


class InMemoryUsageStorage:
    """Dict-backed storage for tests. ``fail_reads``/``fail_writes`` simulate a broken disk."""

    def __init__(self, usage: UsageTable | None = None, admin: AdminConfig | None = None):
        self._usage: dict[str, Any] = _dump_usage(usage or {})
        self._admin: dict[str, Any] = (admin or AdminConfig()).model_dump(mode="json", by_alias=True)
        self.fail_reads = False
        self.fail_writes = False

    def _check(self, flag: bool, action: str) -> None:
        if flag:
            raise StorageUnavailable(f"in-memory storage {action} disabled")

    def read_usage(self) -> UsageTable:
        self._check(self.fail_reads, "read")
        return _parse_usage(json.loads(json.dumps(self._usage)))

    def write_usage(self, table: UsageTable) -> None:
        self._check(self.fail_writes, "write")
        self._usage = _dump_usage(table)

    def read_admin(self) -> AdminConfig:
        self._check(self.fail_reads, "read")
        return _parse_admin(dict(self._admin))

    def write_admin(self, config: AdminConfig) -> None:
        self._check(self.fail_writes, "write")
        self._admin = config.model_dump(mode="json", by_alias=True)


_storage: UsageStorage | None = None
_storage_lock = threading.Lock()


def get_usage_storage() -> UsageStorage:
    global _storage
    with _storage_lock:
        if _storage is None:
            _storage = JsonFileUsageStorage(settings.usage_data_dir)
        return _storage


def set_usage_storage(storage: UsageStorage | None) -> None:
    global _storage
    with _storage_lock:
        _storage = storage
