"""PDF helpers built on pypdf.

Based on pypdf documentation:
https://pypdf.readthedocs.io/en/stable/
"""

import io
import logging

from pypdf import PdfReader, PdfWriter
from pypdf.errors import PdfReadError

logger = logging.getLogger(__name__)

PDF_MIME_TYPE = "application/pdf"


def is_pdf(mime_type: str | None) -> bool:
    return (mime_type or "").lower() == PDF_MIME_TYPE


def extract_pdf_text(content: bytes, max_pages: int | None = None) -> str:
    """Extract embedded text from the leading pages of a PDF.

    Args:
        content: Raw PDF bytes
        max_pages: Number of pages to read (None reads all)

    Returns:
        Page texts joined by newlines; empty string for scanned or broken PDFs
    """
    try:
        reader = PdfReader(io.BytesIO(content))
        pages = reader.pages if max_pages is None else reader.pages[:max_pages]
        texts = [(page.extract_text() or "").replace("\xa0", " ") for page in pages]
    except (PdfReadError, ValueError, OSError) as e:
        logger.warning(f"PDF text extraction failed: {e}")
        return ""
    return "\n".join(texts)


def count_pages(content: bytes) -> int:
    """Number of pages in a PDF, 0 if unreadable."""
    try:
        return len(PdfReader(io.BytesIO(content)).pages)
    except (PdfReadError, ValueError, OSError) as e:
        logger.warning(f"PDF page count failed: {e}")
        return 0


def first_page_only(content: bytes) -> bytes:
    """Return a PDF containing only the first page.

    The input is returned unchanged if it cannot be parsed.
    """
    try:
        reader = PdfReader(io.BytesIO(content))
        writer = PdfWriter()
        writer.add_page(reader.pages[0])
        buffer = io.BytesIO()
        writer.write(buffer)
    except (PdfReadError, ValueError, OSError, IndexError) as e:
        logger.warning(f"Could not extract first PDF page, sending full document: {e}")
        return content
    return buffer.getvalue()
