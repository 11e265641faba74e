from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class OcrInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    confidence: float = Field(ge=0.0, le=1.0)
    page_count: int = Field(default=0, ge=0, alias="pageCount")
    has_images: bool = Field(default=False, alias="hasImages")
    processing_method: str = Field(alias="processingMethod")


class ExtractedText(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: str
    file_name: str = Field(alias="fileName")
    file_size: int = Field(ge=0, alias="fileSize")
    file_type: str = Field(alias="fileType")
    ocr_info: OcrInfo | None = Field(default=None, alias="ocrInfo")
