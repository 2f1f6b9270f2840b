"""OCR-then-parse extraction provider.

Step 1: Tesseract recognises text per page (PDF pages are rasterised first)
and returns text blocks with normalised bounding boxes.
Step 2: the concatenated text goes to a text-only OpenAI model with the
structured-extraction prompt.
"""

import logging
import time

from services.extraction.base import DocumentExtractionProvider, ExtractionOptions
from services.extraction.openai_client import OpenAIChatClient
from services.extraction.parsing import load_json_envelope, parse_extraction
from services.extraction.prompts import SYSTEM_PROMPT, build_text_extraction_prompt
from services.extraction.schema import ProviderExtraction
from services.ocr.service import OCRService
from services.shared import metrics
from services.shared.config import Settings
from services.shared.errors import EmptyDocumentError, ExtractionProviderError

logger = logging.getLogger(__name__)


class OcrParseProvider(OpenAIChatClient, DocumentExtractionProvider):
    """Two-step provider: local OCR, then a text-model parse."""

    def __init__(self, settings: Settings, ocr_service: OCRService | None = None) -> None:
        """Initialize OCR-then-parse provider.

        Args:
            settings: Application settings
            ocr_service: OCR engine (created from settings if omitted)
        """
        DocumentExtractionProvider.__init__(self, settings)
        OpenAIChatClient.__init__(self)
        self.provider_label = self.provider_name
        self.ocr_service = ocr_service or OCRService(settings)

    @property
    def provider_name(self) -> str:
        return "ocr-parse"

    def is_available(self) -> bool:
        return self.has_api_key()

    def extract(
        self,
        content: bytes,
        mime_type: str,
        options: ExtractionOptions | None = None,
    ) -> ProviderExtraction:
        """Run OCR, then parse the recognised text.

        Raises:
            EmptyDocumentError: If OCR yields no text
            ExtractionProviderError: If OCR fails or the model output is malformed
        """
        options = options or ExtractionOptions()
        model = options.model or self.settings.parse_model

        ocr_start = time.time()
        ocr_result = self.ocr_service.extract_document(content, mime_type)
        metrics.provider_call_duration_seconds.labels(
            phase="ocr", provider=self.provider_name
        ).observe(time.time() - ocr_start)

        if not ocr_result.success:
            raise ExtractionProviderError(
                ocr_result.error or "OCR failed", provider=self.provider_name
            )
        if not ocr_result.text.strip():
            raise EmptyDocumentError("OCR returned no text", provider=self.provider_name)

        logger.info(
            f"OCR found {len(ocr_result.text)} chars in {ocr_result.page_count} page(s), "
            f"parsing with {model}"
        )

        parse_start = time.time()
        message, usage = self.complete_json(
            model,
            [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_text_extraction_prompt(ocr_result.text)},
            ],
            options.api_key,
        )
        metrics.provider_call_duration_seconds.labels(
            phase="extraction", provider=self.provider_name
        ).observe(time.time() - parse_start)

        envelope = load_json_envelope(message, self.provider_name)
        _, fields = parse_extraction(envelope, self.provider_name)

        # OCR output is the authoritative text; the model's echo is ignored
        return ProviderExtraction(
            text=ocr_result.text,
            layout_blocks=ocr_result.blocks,
            fields=fields,
            token_usage=usage,
            provider=self.provider_name,
        )
