# renewdesk/services/pdf_text.py
import asyncio

import fitz  # PyMuPDF
import structlog

logger = structlog.get_logger()


class PdfUnreadableError(Exception):
    """The file could not be decoded (corrupt, encrypted or not a PDF)."""


def extract_pdf_text(file_bytes: bytes) -> str:
    """Decode a PDF and return the concatenated text of all pages.

    Image-only (scanned) PDFs decode fine and simply yield little or no text;
    deciding what that means is left to the validation gate.
    """
    try:
        doc = fitz.open(stream=file_bytes, filetype="pdf")
    except Exception as exc:
        logger.warning("pdf_open_failed", error=str(exc), size=len(file_bytes))
        raise PdfUnreadableError(str(exc)) from exc

    try:
        if doc.needs_pass:
            raise PdfUnreadableError("PDF is password-protected")
        if doc.page_count == 0:
            raise PdfUnreadableError("PDF has no pages")
        pages = []
        for page_index, page in enumerate(doc, start=1):
            try:
                pages.append(page.get_text("text"))
            except Exception as exc:
                logger.warning("pdf_page_text_failed", page=page_index, error=str(exc))
        logger.debug("pdf_text_extracted", pages=doc.page_count, characters=sum(map(len, pages)))
        return "\n".join(pages)
    finally:
        doc.close()


async def extract_pdf_text_async(file_bytes: bytes) -> str:
    """Run the synchronous PyMuPDF decode in a worker thread."""
    return await asyncio.to_thread(extract_pdf_text, file_bytes)
