"""Factory for creating extraction providers based on configuration.

Implements Factory Pattern for provider selection with registry pattern for extensibility.

Based on:
- Factory Pattern: https://refactoring.guru/design-patterns/factory-method/python
- Registry Pattern: Python Cookbook 3rd Edition, Recipe 9.22

The provider is chosen once from Settings and handed to the orchestrator's
constructor; nothing reads the selection from global state afterwards.
"""

import logging

from services.extraction.base import DocumentClassifier, DocumentExtractionProvider
from services.extraction.ocr_provider import OcrParseProvider
from services.extraction.vision_provider import VisionParseProvider
from services.shared.config import Settings

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Registry of available extraction providers.

    Maintains a mapping of provider names to their implementation classes.
    Supports runtime registration of new providers.
    """

    _providers: dict[str, type[DocumentExtractionProvider]] = {
        "vision": VisionParseProvider,
        "ocr-parse": OcrParseProvider,
    }

    @classmethod
    def register(cls, name: str, provider_class: type[DocumentExtractionProvider]) -> None:
        """Register a new provider.

        Args:
            name: Provider identifier (must match Settings.extraction_provider)
            provider_class: Provider class implementing DocumentExtractionProvider
        """
        cls._providers[name] = provider_class
        logger.info(f"Registered extraction provider: {name}")

    @classmethod
    def get_provider_class(cls, name: str) -> type[DocumentExtractionProvider]:
        """Get provider class by name.

        Args:
            name: Provider identifier

        Returns:
            Provider class implementing DocumentExtractionProvider

        Raises:
            ValueError: If provider not found in registry
        """
        if name not in cls._providers:
            available = ", ".join(cls._providers.keys())
            raise ValueError(
                f"Unknown extraction provider: '{name}'. " f"Available providers: {available}"
            )
        return cls._providers[name]

    @classmethod
    def list_providers(cls) -> list[str]:
        """List all registered provider names.

        Returns:
            List of provider names
        """
        return list(cls._providers.keys())


def create_extraction_provider(settings: Settings) -> DocumentExtractionProvider:
    """Create the extraction provider named by settings.extraction_provider.

    Logs a warning if the provider is not available (e.g., missing API key).

    Args:
        settings: Application settings with extraction_provider field

    Returns:
        Configured extraction provider instance

    Raises:
        ValueError: If configured provider is unknown

    Example:
        >>> settings = Settings(extraction_provider="ocr-parse")
        >>> provider = create_extraction_provider(settings)
        >>> result = provider.extract(pdf_bytes, "application/pdf")
    """
    provider_name = settings.extraction_provider
    provider_class = ProviderRegistry.get_provider_class(provider_name)

    provider = provider_class(settings)

    if not provider.is_available():
        logger.warning(
            f"Extraction provider '{provider_name}' is not fully available. "
            f"Check configuration (e.g., API keys)."
        )

    logger.info(f"Created extraction provider: {provider_name}")
    return provider


def create_document_classifier(settings: Settings) -> DocumentClassifier:
    """Create the invoice classifier.

    Classification always runs on the vision model, whichever extraction
    provider is configured.
    """
    return VisionParseProvider(settings)
