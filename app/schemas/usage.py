from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator

UNLIMITED = -1


class UsageRecord(BaseModel):
    """One identity's consumption inside its current window.

    Stored on disk as ``{"count": 3, "lastReset": "<iso-8601>"}``.
    """

    model_config = ConfigDict(populate_by_name=True)

    count: int = Field(ge=0)
    window_start: datetime = Field(alias="lastReset")

    @field_validator("window_start")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class AdminConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    rate_limit_enabled: bool = Field(default=True, alias="rateLimitEnabled")
    allow_list: list[str] = Field(default_factory=list, alias="whitelistedUsers")


class Decision(BaseModel):
    """Outcome of a quota check. ``remaining == UNLIMITED`` means no cap applies."""

    model_config = ConfigDict(populate_by_name=True)

    allowed: bool
    remaining: int
    reset_at: datetime | None = Field(default=None, alias="resetTime")

    @property
    def unlimited(self) -> bool:
        return self.remaining == UNLIMITED


class UsageReportRow(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    identity: str = Field(alias="email")
    count: int
    quota: int
    window_start: datetime = Field(alias="lastReset")
    reset_at: datetime = Field(alias="resetTime")
    resets_in_seconds: int = Field(ge=0, alias="resetsInSeconds")
    time_until_reset: str = Field(alias="timeUntilReset")


class AdminStatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    admin_data: AdminConfig = Field(alias="adminData")
    usage_data: dict[str, UsageRecord] = Field(default_factory=dict, alias="usageData")
    total_users: int = Field(alias="totalUsers")
    usage_report: list[UsageReportRow] = Field(default_factory=list, alias="usageReport")


class AdminUpdateResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    message: str
    admin_data: AdminConfig = Field(alias="adminData")
