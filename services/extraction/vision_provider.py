"""Vision-and-parse extraction provider.

Sends the raw document bytes to a vision-capable OpenAI model in a single
call. There is no OCR pass; layout boxes are only present when the model
returns them.

Also implements the invoice classifier, which always needs vision because it
runs before any text is available.
"""

import base64
import logging
import time
from typing import Any

from services.extraction.base import (
    DocumentClassifier,
    DocumentExtractionProvider,
    ExtractionOptions,
)
from services.extraction.openai_client import OpenAIChatClient
from services.extraction.parsing import (
    load_json_envelope,
    parse_classification,
    parse_extraction,
    parse_field_boxes,
)
from services.extraction.prompts import (
    CLASSIFICATION_PROMPT,
    SYSTEM_PROMPT,
    VISION_EXTRACTION_PROMPT,
)
from services.extraction.schema import ClassificationResult, ProviderExtraction
from services.ocr.pdf import count_pages, first_page_only, is_pdf
from services.shared import metrics
from services.shared.config import Settings
from services.shared.errors import EmptyDocumentError

logger = logging.getLogger(__name__)


def document_part(content: bytes, mime_type: str) -> dict[str, Any]:
    """Build the chat content part carrying the document.

    PDFs are sent as file parts, everything else as an image data URL.
    """
    encoded = base64.b64encode(content).decode("ascii")
    if is_pdf(mime_type):
        return {
            "type": "file",
            "file": {
                "filename": "document.pdf",
                "file_data": f"data:application/pdf;base64,{encoded}",
            },
        }
    image_type = mime_type if mime_type.startswith("image/") else "image/jpeg"
    return {"type": "image_url", "image_url": {"url": f"data:{image_type};base64,{encoded}"}}


def _messages(prompt: str, content: bytes, mime_type: str) -> list[dict[str, Any]]:
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {
            "role": "user",
            "content": [document_part(content, mime_type), {"type": "text", "text": prompt}],
        },
    ]


class VisionParseProvider(OpenAIChatClient, DocumentExtractionProvider, DocumentClassifier):
    """Single-call vision extraction and classification."""

    def __init__(self, settings: Settings) -> None:
        """Initialize vision provider.

        Args:
            settings: Application settings
        """
        DocumentExtractionProvider.__init__(self, settings)
        OpenAIChatClient.__init__(self)
        self.provider_label = self.provider_name

    @property
    def provider_name(self) -> str:
        return "vision"

    def is_available(self) -> bool:
        return self.has_api_key()

    def classify(
        self,
        content: bytes,
        mime_type: str,
        options: ExtractionOptions | None = None,
    ) -> ClassificationResult:
        """Decide invoice vs not-invoice from the first page.

        PDFs longer than two pages are cut to their first page to bound cost.
        """
        options = options or ExtractionOptions()
        model = options.model or self.settings.classification_model
        if is_pdf(mime_type) and count_pages(content) > 2:
            content = first_page_only(content)

        start = time.time()
        message, usage = self.complete_json(
            model, _messages(CLASSIFICATION_PROMPT, content, mime_type), options.api_key
        )
        metrics.provider_call_duration_seconds.labels(
            phase="classification", provider=self.provider_name
        ).observe(time.time() - start)

        result = parse_classification(
            load_json_envelope(message, self.provider_name), self.provider_name, usage
        )
        logger.info(
            f"Classification by {model}: is_invoice={result.is_invoice}"
            f"{'' if result.is_invoice else f' ({result.reason})'}"
        )
        return result

    def extract(
        self,
        content: bytes,
        mime_type: str,
        options: ExtractionOptions | None = None,
    ) -> ProviderExtraction:
        """Extract fields with one vision call.

        Raises:
            ExtractionProviderError: On malformed output or API failure
            EmptyDocumentError: If the model saw no text and found no fields
        """
        options = options or ExtractionOptions()
        model = options.model or self.settings.vision_model

        start = time.time()
        message, usage = self.complete_json(
            model, _messages(VISION_EXTRACTION_PROMPT, content, mime_type), options.api_key
        )
        elapsed = time.time() - start
        metrics.provider_call_duration_seconds.labels(
            phase="extraction", provider=self.provider_name
        ).observe(elapsed)

        envelope = load_json_envelope(message, self.provider_name)
        text, fields = parse_extraction(envelope, self.provider_name)
        if not text.strip() and fields.amount is None and fields.issuer is None:
            raise EmptyDocumentError("No text recognised in document", provider=self.provider_name)

        logger.info(f"Vision extraction by {model} took {elapsed * 1000:.0f}ms")
        return ProviderExtraction(
            text=text,
            fields=fields,
            field_locations=parse_field_boxes(envelope),
            token_usage=usage,
            provider=self.provider_name,
        )
