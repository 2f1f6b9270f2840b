"""Shared fixtures for unit tests."""

from unittest.mock import MagicMock

import pytest

from services.extraction.schema import (
    ClassificationResult,
    ExtractedEntity,
    ExtractedFields,
    ProviderExtraction,
    TokenUsage,
)
from services.shared.config import Settings
from services.storage.service import DownloadResult
from services.store.memory import InMemoryStore
from services.store.models import Document


@pytest.fixture
def settings() -> Settings:
    """Default settings with the text pre-classifier enabled."""
    return Settings(text_classifier_enabled=True)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def storage() -> MagicMock:
    """Blob storage returning a small PDF payload."""
    mock = MagicMock()
    mock.download_bytes.return_value = DownloadResult(success=True, data=b"%PDF-1.4 test")
    return mock


@pytest.fixture
def document() -> Document:
    return Document(id="doc-1", owner_id="owner-1", storage_path="documents/owner-1/doc-1.pdf")


def _make_extraction(
    issuer: ExtractedEntity | None = None,
    recipient: ExtractedEntity | None = None,
    amount: int | None = 14999,
    provider: str = "vision",
) -> ProviderExtraction:
    """Provider output with sensible defaults."""
    return ProviderExtraction(
        text="Rechnung\nMwSt 20%\n€149,99",
        fields=ExtractedFields(
            amount=amount,
            currency="EUR",
            vat_percent=20,
            issuer=issuer,
            recipient=recipient,
            confidence=0.92,
        ),
        token_usage=TokenUsage(model="gpt-4o-mini", input_tokens=1200, output_tokens=300),
        provider=provider,
    )


def _make_classification(
    is_invoice: bool = True, reason: str | None = None
) -> ClassificationResult:
    return ClassificationResult(
        is_invoice=is_invoice,
        reason=reason,
        token_usage=TokenUsage(model="gpt-4o-mini", input_tokens=800, output_tokens=20),
    )


@pytest.fixture
def make_extraction():  # type: ignore[no-untyped-def]
    """Factory for ProviderExtraction results."""
    return _make_extraction


@pytest.fixture
def make_classification():  # type: ignore[no-untyped-def]
    """Factory for ClassificationResult verdicts."""
    return _make_classification
