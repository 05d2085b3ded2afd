"""
Text validation gate. Decides whether a PDF carries real, selectable text
or is most likely a scanned image.

The gate never attempts OCR. A failed check is a warning the caller may
override (force upload), not a hard error.
"""

import re
from dataclasses import asdict, dataclass
from typing import Optional

import structlog

from renewdesk.services.pdf_text import PdfUnreadableError, extract_pdf_text_async

logger = structlog.get_logger()

# Minimum cleaned characters for a document to count as "real" text
MIN_TEXT_THRESHOLD = 50
PREVIEW_LENGTH = 200

SCANNED_IMAGE_WARNING = (
    "Warning: This file appears to be a scanned image. "
    "Please upload a digital PDF with selectable text "
    "to ensure accurate data extraction."
)
UNREADABLE_FILE_WARNING = (
    "Error: Unable to read PDF content. "
    "The file may be corrupted or password-protected."
)

_WHITESPACE_RE = re.compile(r"\s+")


@dataclass
class TextValidationResult:
    is_valid: bool
    character_count: int
    is_scanned_image: bool
    warning_message: Optional[str] = None
    raw_text_preview: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


def clean_text(text: Optional[str]) -> str:
    """Collapse every whitespace run to a single space and trim."""
    return _WHITESPACE_RE.sub(" ", text or "").strip()


def validate_text(text: Optional[str]) -> TextValidationResult:
    cleaned = clean_text(text)
    character_count = len(cleaned)
    is_scanned_image = character_count < MIN_TEXT_THRESHOLD

    logger.debug(
        "pdf_text_validated",
        character_count=character_count,
        threshold=MIN_TEXT_THRESHOLD,
        scanned=is_scanned_image,
    )

    return TextValidationResult(
        is_valid=not is_scanned_image,
        character_count=character_count,
        is_scanned_image=is_scanned_image,
        warning_message=SCANNED_IMAGE_WARNING if is_scanned_image else None,
        raw_text_preview=cleaned[:PREVIEW_LENGTH],
    )


def unreadable_file_result() -> TextValidationResult:
    return TextValidationResult(
        is_valid=False,
        character_count=0,
        is_scanned_image=True,
        warning_message=UNREADABLE_FILE_WARNING,
    )


async def validate_pdf(file_bytes: bytes) -> tuple[TextValidationResult, str]:
    """Decode and validate a PDF.

    Returns the validation result together with the decoded text ("" when the
    file could not be read) so callers do not decode the file twice.
    """
    try:
        text = await extract_pdf_text_async(file_bytes)
    except PdfUnreadableError as exc:
        logger.error("pdf_validation_failed", error=str(exc))
        return unreadable_file_result(), ""
    return validate_text(text), text
