"""Abstract base classes for document extraction providers.

Enables switching between the OCR-then-parse and the vision-and-parse
providers while the orchestrator sees one consistent interface.

Based on Strategy Pattern:
https://refactoring.guru/design-patterns/strategy/python

Design follows existing patterns:
- Pydantic BaseModel for type-safe results (consistent with schema.py)
- ABC for interface enforcement (Python standard library)
- Settings injection (consistent with existing service initialization)
"""

from abc import ABC, abstractmethod

from pydantic import BaseModel

from services.extraction.schema import ClassificationResult, ProviderExtraction
from services.shared.config import Settings


class ExtractionOptions(BaseModel):
    """Per-call overrides.

    Attributes:
        model: Model name overriding the configured default
        api_key: API key overriding OPENAI_API_KEY
    """

    model: str | None = None
    api_key: str | None = None


class DocumentExtractionProvider(ABC):
    """Abstract base class for invoice extraction providers.

    Implementations turn document bytes into raw text, optional layout blocks,
    structured fields and token usage. They raise ExtractionProviderError
    (or EmptyDocumentError) instead of returning partial results.

    Implementations:
    - OcrParseProvider: Tesseract OCR followed by a text-model parse
    - VisionParseProvider: one vision-model call on the raw bytes
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize provider with settings.

        Args:
            settings: Application settings
        """
        self.settings = settings

    @abstractmethod
    def extract(
        self,
        content: bytes,
        mime_type: str,
        options: ExtractionOptions | None = None,
    ) -> ProviderExtraction:
        """Extract structured invoice data from a document.

        Args:
            content: Raw document bytes
            mime_type: Declared MIME type (application/pdf, image/png, ...)
            options: Per-call model and API key overrides

        Returns:
            ProviderExtraction with text, layout, fields and token usage

        Raises:
            ExtractionProviderError: On malformed model output or transport failure
            EmptyDocumentError: If no text could be recognised
        """

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this provider is available/configured.

        Returns:
            True if provider can be used, False otherwise
        """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get provider name for logging/metrics.

        Returns:
            Provider identifier (e.g., 'vision', 'ocr-parse')
        """


class DocumentClassifier(ABC):
    """Decides whether a document is an invoice at all."""

    @abstractmethod
    def classify(
        self,
        content: bytes,
        mime_type: str,
        options: ExtractionOptions | None = None,
    ) -> ClassificationResult:
        """Classify a document as invoice or not-invoice.

        Raises:
            ExtractionProviderError: On malformed model output or transport failure
        """
