from __future__ import annotations

import logging
from io import BytesIO
from zipfile import BadZipFile, ZipFile

from app.parsing.models import ExtractedText, OcrInfo
from app.services.ocr import OcrError, extract_text_with_ocr, ocr_available

logger = logging.getLogger(__name__)

PDF_TYPE = "application/pdf"
DOCX_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
DOC_TYPE = "application/msword"
TXT_TYPE = "text/plain"

ALLOWED_CONTENT_TYPES = (PDF_TYPE, DOCX_TYPE, DOC_TYPE, TXT_TYPE)

EXTENSION_CONTENT_TYPES = {
    "pdf": PDF_TYPE,
    "docx": DOCX_TYPE,
    "doc": DOC_TYPE,
    "txt": TXT_TYPE,
}

PDF_MAGIC = b"%PDF-"
ZIP_MAGICS = (b"PK\x03\x04", b"PK\x05\x06", b"PK\x07\x08")

PDF_NEEDS_OCR_MESSAGE = (
    "PDF processing requires AI OCR configuration. Please convert your PDF to DOCX or TXT format "
    "using Google Docs, Microsoft Word, or any online converter, then try again."
)


class TextExtractionError(ValueError):
    def __init__(self, message: str, *, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


def resolve_content_type(filename: str, content_type: str | None) -> str:
    """Browser MIME type when it is one we accept, otherwise a guess from the extension."""
    declared = (content_type or "").split(";")[0].strip().lower()
    if declared in ALLOWED_CONTENT_TYPES:
        return declared
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    return EXTENSION_CONTENT_TYPES.get(ext, declared)


def _is_docx_payload(content: bytes) -> bool:
    if not any(content.startswith(prefix) for prefix in ZIP_MAGICS):
        return False
    try:
        with ZipFile(BytesIO(content)) as archive:
            return any(name.startswith("word/") for name in archive.namelist())
    except BadZipFile:
        return False


def _parse_txt(content: bytes) -> str:
    return content.decode("utf-8", errors="replace")


def _parse_docx(content: bytes) -> str:
    from docx import Document

    if not _is_docx_payload(content):
        raise TextExtractionError("File signature does not match .docx content.")

    document = Document(BytesIO(content))
    lines = [p.text.strip() for p in document.paragraphs if p.text and p.text.strip()]
    for table in document.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells if cell.text and cell.text.strip()]
            if cells:
                lines.append("\t".join(cells))
    return "\n".join(lines)


def _parse_pdf_text_layer(content: bytes) -> str:
    from pypdf import PdfReader

    reader = PdfReader(BytesIO(content))
    parts = [(page.extract_text() or "").strip() for page in reader.pages]
    return "\n".join(part for part in parts if part)


def _extract_pdf(filename: str, content: bytes) -> tuple[str, OcrInfo | None]:
    if not content.startswith(PDF_MAGIC):
        raise TextExtractionError("File signature does not match .pdf content.")

    if ocr_available():
        try:
            result = extract_text_with_ocr(filename=filename, content=content)
        except OcrError as exc:
            raise TextExtractionError(str(exc)) from exc
        return result.text, OcrInfo(
            confidence=result.confidence,
            page_count=result.page_count,
            has_images=result.has_images,
            processing_method="Mistral OCR",
        )

    text = _parse_pdf_text_layer(content)
    if not text.strip():
        raise TextExtractionError(PDF_NEEDS_OCR_MESSAGE)
    return text, None


def extract_upload_text(*, filename: str, content_type: str | None, content: bytes) -> ExtractedText:
    file_type = resolve_content_type(filename, content_type)
    if file_type not in ALLOWED_CONTENT_TYPES:
        raise TextExtractionError("Invalid file type")
    if file_type == DOC_TYPE:
        raise TextExtractionError("DOC files are not supported. Please convert to PDF or DOCX format.")

    logger.info("extract_text file=%s type=%s size=%s", filename, file_type, len(content))
    ocr_info: OcrInfo | None = None
    try:
        if file_type == PDF_TYPE:
            text, ocr_info = _extract_pdf(filename, content)
        elif file_type == DOCX_TYPE:
            text = _parse_docx(content)
        else:
            text = _parse_txt(content)
    except TextExtractionError:
        raise
    except Exception as exc:  # noqa: BLE001 - parser libraries raise many types
        logger.error("extract_text_failed file=%s type=%s: %s", filename, file_type, exc)
        raise TextExtractionError(
            "Failed to extract text from file. Please ensure the file is not corrupted.",
            status_code=500,
        ) from exc

    if not text.strip():
        raise TextExtractionError("No text could be extracted from the file")

    return ExtractedText(
        text=text,
        file_name=filename,
        file_size=len(content),
        file_type=file_type,
        ocr_info=ocr_info,
    )
