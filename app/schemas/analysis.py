from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class AnalyzeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    resume_text: str = Field(default="", max_length=100000, alias="resumeText")
    job_description: str = Field(default="", max_length=50000, alias="jobDescription")


class RemainingUses(BaseModel):
    remaining: int


class AnalyzeResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    analysis: dict[str, Any]
    timestamp: datetime
    rate_limit: RemainingUses = Field(alias="rateLimit")
