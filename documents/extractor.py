from __future__ import annotations

import io
import logging

from config.settings import settings

log = logging.getLogger("studybuddy.documents")

PDF = "application/pdf"
DOC = "application/msword"
DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
IMAGE_TYPES = ("image/jpeg", "image/jpg", "image/png")

ALLOWED_TYPES = (PDF, DOC, DOCX) + IMAGE_TYPES


class DocumentExtractionError(Exception):
    pass


def _pdf_text(data: bytes) -> str:
    from pypdf import PdfReader

    reader = PdfReader(io.BytesIO(data))
    return "\n".join((page.extract_text() or "") for page in reader.pages)


def _word_text(data: bytes) -> str:
    from docx import Document

    doc = Document(io.BytesIO(data))
    return "\n".join(p.text for p in doc.paragraphs)


def _image_text(data: bytes) -> str:
    import pytesseract
    from PIL import Image

    with Image.open(io.BytesIO(data)) as img:
        return pytesseract.image_to_string(img, lang=settings.OCR_LANGUAGE)


def extract_text(data: bytes, kind: str) -> str:
    """Plain text of an uploaded document, dispatched on its MIME type.

    Unsupported types yield an empty string. Parser failures raise
    DocumentExtractionError with a message fit for the client.
    """
    kind = (kind or "").lower()
    if kind == PDF:
        extractor, label = _pdf_text, "PDF"
    elif kind in (DOC, DOCX):
        extractor, label = _word_text, "Word document"
    elif kind.startswith("image/"):
        extractor, label = _image_text, "image"
    else:
        return ""

    try:
        text = extractor(data)
    except Exception as e:
        log.warning(
            "document_extract_failed",
            extra={"extra": {"event": "document_extract_failed", "kind": kind, "error_type": type(e).__name__, "message": str(e)}},
        )
        raise DocumentExtractionError(
            f"Could not extract text from the {label}. Unsupported format or corrupt file."
        ) from e

    log.info("document_extracted", extra={"extra": {"event": "document_extracted", "kind": kind, "chars": len(text)}})
    return text
