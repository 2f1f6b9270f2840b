"""OCR service using Tesseract.

Production-grade OCR implementation with:
- Configurable Tesseract path via environment variables
- PDF rasterisation through pdf2image
- Per-line text blocks with bounding boxes normalised to 0..1
- Type-safe results using Pydantic

Based on pytesseract documentation:
https://github.com/madmaze/pytesseract
"""

import io
import logging
import os

import pytesseract
from pdf2image import convert_from_bytes
from PIL import Image
from pydantic import BaseModel, Field

from services.extraction.schema import BoundingBox, LayoutBlock, Vertex
from services.ocr.pdf import is_pdf
from services.shared.config import Settings

logger = logging.getLogger(__name__)


class OCRResult(BaseModel):
    """Result of OCR operation.

    Attributes:
        text: Extracted text content, pages joined by blank lines
        blocks: Text blocks with normalised bounding boxes
        page_count: Number of pages processed
        success: Whether operation succeeded
        error: Error message if operation failed
    """

    text: str
    blocks: list[LayoutBlock] = Field(default_factory=list)
    page_count: int = 0
    success: bool
    error: str | None = None


class OCRService:
    """OCR service using Tesseract engine.

    Handles text extraction from images and PDFs with proper error handling
    and configuration management.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize OCR service.

        Args:
            settings: Application settings
        """
        self.settings = settings
        self._configure_tesseract()

    def _configure_tesseract(self) -> None:
        """Configure Tesseract command path from environment.

        Allows overriding default Tesseract path via TESSERACT_CMD environment variable.
        Common paths:
        - Linux: /usr/bin/tesseract
        - macOS: /opt/homebrew/bin/tesseract or /usr/local/bin/tesseract
        - Windows: C:\\Program Files\\Tesseract-OCR\\tesseract.exe
        """
        tesseract_cmd = os.getenv("TESSERACT_CMD")
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

    def _load_pages(self, content: bytes, mime_type: str) -> list[Image.Image]:
        if is_pdf(mime_type):
            return convert_from_bytes(
                content,
                dpi=self.settings.ocr_dpi,
                last_page=self.settings.ocr_max_pages,
            )
        return [Image.open(io.BytesIO(content))]

    def extract_document(self, content: bytes, mime_type: str) -> OCRResult:
        """Run OCR over every page of a document.

        Args:
            content: Raw document bytes (PDF or image)
            mime_type: Declared MIME type

        Returns:
            OCRResult with text and layout blocks, or error information
        """
        try:
            pages = self._load_pages(content, mime_type)
            page_texts: list[str] = []
            blocks: list[LayoutBlock] = []
            for page_index, image in enumerate(pages):
                page_blocks = self._extract_blocks(image, page_index)
                blocks.extend(page_blocks)
                page_texts.append("\n".join(block.text for block in page_blocks))

            logger.info(f"OCR processed {len(pages)} page(s), {len(blocks)} block(s)")
            return OCRResult(
                text="\n\n".join(t for t in page_texts if t),
                blocks=blocks,
                page_count=len(pages),
                success=True,
            )

        except Exception as e:
            logger.error(f"OCR processing failed: {e}")
            return OCRResult(text="", success=False, error=f"OCR processing failed: {str(e)}")

    def _extract_blocks(self, image: Image.Image, page_index: int) -> list[LayoutBlock]:
        """Group Tesseract words into line blocks with normalised boxes."""
        data = pytesseract.image_to_data(
            image,
            lang=self.settings.ocr_languages,
            output_type=pytesseract.Output.DICT,
        )
        width, height = image.size
        lines: dict[tuple[int, int, int], list[int]] = {}
        for i, word in enumerate(data["text"]):
            if not str(word).strip():
                continue
            key = (data["block_num"][i], data["par_num"][i], data["line_num"][i])
            lines.setdefault(key, []).append(i)

        blocks: list[LayoutBlock] = []
        for indices in lines.values():
            left = min(data["left"][i] for i in indices)
            top = min(data["top"][i] for i in indices)
            right = max(data["left"][i] + data["width"][i] for i in indices)
            bottom = max(data["top"][i] + data["height"][i] for i in indices)
            confidences = [float(data["conf"][i]) for i in indices if float(data["conf"][i]) >= 0]
            blocks.append(
                LayoutBlock(
                    text=" ".join(str(data["text"][i]).strip() for i in indices),
                    bounding_box=BoundingBox(
                        vertices=[
                            Vertex(x=left / width, y=top / height),
                            Vertex(x=right / width, y=top / height),
                            Vertex(x=right / width, y=bottom / height),
                            Vertex(x=left / width, y=bottom / height),
                        ],
                        page_index=page_index,
                    ),
                    confidence=(
                        sum(confidences) / len(confidences) / 100 if confidences else 0.0
                    ),
                )
            )
        return blocks
