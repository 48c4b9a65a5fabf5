"""PDF text extraction with pypdf."""

from __future__ import annotations

import io
import logging
import re
from dataclasses import dataclass

from pypdf import PdfReader
from pypdf.errors import PyPdfError

from .exceptions import ExtractionError

logger = logging.getLogger(__name__)

_INLINE_WHITESPACE = re.compile(r"[ \t\r\f\v]+")
_BLANK_LINES = re.compile(r"\n{3,}")


@dataclass
class ExtractedText:
    text: str
    page_count: int
    char_count: int
    truncated: bool = False


def normalize_whitespace(text: str) -> str:
    lines = [_INLINE_WHITESPACE.sub(" ", line).strip() for line in text.split("\n")]
    return _BLANK_LINES.sub("\n\n", "\n".join(lines)).strip()


def extract_text(pdf_bytes: bytes, max_chars: int | None = None) -> ExtractedText:
    """
    Read all pages of a PDF and return their text.

    Args:
        pdf_bytes: Raw PDF file contents
        max_chars: Truncate the joined text to this many characters

    Raises:
        ExtractionError: If the bytes are not a readable PDF or contain no text
    """
    # the header may be preceded by junk within the first 1024 bytes
    if b"%PDF-" not in pdf_bytes[:1024]:
        raise ExtractionError("File is not a PDF document")

    try:
        reader = PdfReader(io.BytesIO(pdf_bytes))
        if reader.is_encrypted and not reader.decrypt(""):
            raise ExtractionError("PDF is password protected")

        page_texts = []
        for page in reader.pages:
            page_text = page.extract_text() or ""
            if page_text.strip():
                page_texts.append(normalize_whitespace(page_text))
        page_count = len(reader.pages)
    except (PyPdfError, ValueError, KeyError) as exc:
        raise ExtractionError(f"PDF could not be read: {exc}") from exc

    text = "\n\n".join(page_texts)
    if not text:
        raise ExtractionError("No extractable text found; the PDF may be a scanned image")

    char_count = len(text)
    truncated = max_chars is not None and char_count > max_chars
    if truncated:
        logger.info("Truncating extracted text from %s to %s characters", char_count, max_chars)
        text = text[:max_chars]

    return ExtractedText(text=text, page_count=page_count, char_count=char_count, truncated=truncated)
