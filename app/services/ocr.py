from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from mistralai import Mistral

from app.core.config import settings

logger = logging.getLogger(__name__)

OCR_CONFIDENCE = 0.95
SIGNED_URL_EXPIRY_HOURS = 1

_MARKDOWN_CLEANUP: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"!\[.*?\]\(.*?\)"), ""),
    (re.compile(r"#{1,6}\s"), ""),
    (re.compile(r"\*\*(.*?)\*\*"), r"\1"),
    (re.compile(r"\*(.*?)\*"), r"\1"),
    (re.compile(r"\[(.*?)\]\(.*?\)"), r"\1"),
    (re.compile(r"\|.*?\|"), ""),
    (re.compile(r"^-\s+", flags=re.MULTILINE), ""),
    (re.compile(r"^\d+\.\s+", flags=re.MULTILINE), ""),
    (re.compile(r"\n{3,}"), "\n\n"),
)


class OcrError(RuntimeError):
    pass


@dataclass(frozen=True)
class OcrResult:
    text: str
    confidence: float
    page_count: int
    has_images: bool


def ocr_available() -> bool:
    return bool((settings.mistral_api_key or "").strip())


def markdown_to_text(markdown: str) -> str:
    text = markdown
    for pattern, replacement in _MARKDOWN_CLEANUP:
        text = pattern.sub(replacement, text)
    return text.strip()


def _friendly_error(exc: Exception) -> OcrError:
    message = str(exc)
    lower = message.lower()
    if "mistral_api_key" in lower:
        return OcrError("PDF processing is not configured. Please contact support.")
    if "rate limit" in lower or "quota" in lower:
        return OcrError("PDF processing is temporarily unavailable due to high demand. Please try again later.")
    if "file too large" in lower:
        return OcrError("PDF file is too large. Please ensure your file is under 50MB.")
    return OcrError(f"PDF processing failed: {message}")


def _client() -> Mistral:
    api_key = (settings.mistral_api_key or "").strip()
    if not api_key:
        raise OcrError("MISTRAL_API_KEY environment variable is not set")
    return Mistral(api_key=api_key)


def extract_text_with_ocr(*, filename: str, content: bytes) -> OcrResult:
    """Run a PDF through Mistral OCR and flatten every page to plain text."""
    try:
        client = _client()
        uploaded = client.files.upload(file={"file_name": filename, "content": content}, purpose="ocr")
        logger.info("ocr_uploaded file=%s id=%s", filename, uploaded.id)
        try:
            signed = client.files.get_signed_url(file_id=uploaded.id, expiry=SIGNED_URL_EXPIRY_HOURS)
            response = client.ocr.process(
                model=settings.ocr_model,
                document={"type": "document_url", "document_url": signed.url},
                include_image_base64=False,
                image_limit=10,
            )
        finally:
            try:
                client.files.delete(file_id=uploaded.id)
            except Exception as cleanup_exc:  # noqa: BLE001 - cleanup is best effort
                logger.warning("ocr_cleanup_failed id=%s: %s", uploaded.id, cleanup_exc)
    except OcrError as exc:
        raise _friendly_error(exc) from exc
    except Exception as exc:  # noqa: BLE001 - provider errors are mapped to user messages
        logger.error("ocr_failed file=%s: %s", filename, exc)
        raise _friendly_error(exc) from exc

    pages = list(response.pages or [])
    parts: list[str] = []
    has_images = False
    for page in pages:
        page_text = markdown_to_text(page.markdown or "")
        if page_text:
            parts.append(page_text)
        if page.images:
            has_images = True

    text = "\n\n".join(parts).strip()
    if not text:
        raise OcrError("No text could be extracted from the PDF")

    logger.info("ocr_complete file=%s pages=%s chars=%s", filename, len(pages), len(text))
    return OcrResult(text=text, confidence=OCR_CONFIDENCE, page_count=len(pages), has_images=has_images)
