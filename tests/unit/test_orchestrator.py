"""Unit tests for the extraction orchestrator.

Tests cover:
- Text verdicts replacing the model call
- Counterparty resolution and the consolidated write
- Not-invoice handling
- Failure recording per phase
"""

from unittest.mock import MagicMock, patch

import pytest

from services.extraction.base import ExtractionOptions
from services.extraction.orchestrator import (
    EXTRACTED_FIELDS,
    ExtractionOrchestrator,
    ExtractionRunOptions,
)
from services.extraction.schema import (
    BoundingBox,
    ExtractedEntity,
    ExtractedRaw,
    LayoutBlock,
    Vertex,
)
from services.shared.config import Settings
from services.shared.errors import (
    DocumentNotFoundError,
    EmptyDocumentError,
    ExtractionFailedError,
    ExtractionProviderError,
    MissingStoragePathError,
    StorageDownloadError,
)
from services.storage.service import DownloadResult
from services.store.models import BankSource, Document, UserIdentity

INVOICE_TEXT = "Rechnung Nr. 2024-001\nOffice Supplies GmbH\nMwSt 20%\nGesamt €149,99"
ANNUAL_STATEMENT_TEXT = (
    "Jahresabschluss zum 31.12.2023 der Muster GmbH mit Bilanz und Anhang "
    "fuer das Geschaeftsjahr"
)

SUPPLIER = ExtractedEntity(name="Office Supplies GmbH", vat_id="DE999999999")
OWNER = ExtractedEntity(name="Muster Consulting", vat_id="ATU12345678")


@pytest.fixture
def provider(make_extraction) -> MagicMock:
    mock = MagicMock()
    mock.extract.return_value = make_extraction(issuer=SUPPLIER, recipient=OWNER)
    return mock


@pytest.fixture
def classifier(make_classification) -> MagicMock:
    mock = MagicMock()
    mock.classify.return_value = make_classification(True)
    return mock


@pytest.fixture
def orchestrator(settings, store, storage, provider, classifier, document):
    store.save_document(document)
    return ExtractionOrchestrator(settings, store, storage, provider, classifier)


@pytest.fixture
def pdf_text():
    """Embedded PDF text seen by the text pre-classifier."""
    with patch("services.classification.text_classifier.extract_pdf_text") as mock:
        mock.return_value = ""
        yield mock


@pytest.fixture
def identity(store) -> UserIdentity:
    identity = UserIdentity(
        owner_id="owner-1", company_name="Muster Consulting", vat_ids=["ATU12345678"]
    )
    store.save_user_identity(identity)
    return identity


class TestScenarios:
    """End-to-end runs against the in-memory store."""

    def test_incoming_invoice_from_text(
        self, orchestrator, store, provider, classifier, pdf_text, identity
    ) -> None:
        """Should classify from text and resolve the issuer as counterparty."""
        pdf_text.return_value = INVOICE_TEXT

        result = orchestrator.run("doc-1")

        document = store.get_document("doc-1")
        assert result.is_invoice is True
        assert result.classification_source == "text"
        assert result.invoice_direction == "incoming"
        classifier.classify.assert_not_called()
        assert document.classification_complete is True
        assert document.is_not_invoice is False
        assert document.extraction_complete is True
        assert document.extraction_error is None
        assert document.extracted_amount == 14999
        assert document.extraction_confidence == 92
        assert document.extracted_partner == "Office Supplies GmbH"
        assert document.extracted_vat_id == "DE999999999"
        assert document.matched_user_account == "recipient"
        assert document.invoice_direction == "incoming"
        assert [r.phase for r in store.usage] == ["extraction"]

    def test_annual_statement_skips_model(
        self, orchestrator, store, provider, classifier, pdf_text
    ) -> None:
        """Should trust a high-confidence text verdict and stop."""
        pdf_text.return_value = ANNUAL_STATEMENT_TEXT

        result = orchestrator.run("doc-1")

        document = store.get_document("doc-1")
        assert result.is_invoice is False
        assert result.classification_source == "text"
        classifier.classify.assert_not_called()
        provider.extract.assert_not_called()
        assert document.is_not_invoice is True
        assert "Score: -2" in document.not_invoice_reason
        assert document.extraction_complete is True

    def test_no_identity_configured(self, orchestrator, store, pdf_text) -> None:
        """Should fall back to the issuer with unknown direction."""
        result = orchestrator.run("doc-1")

        document = store.get_document("doc-1")
        assert result.invoice_direction == "unknown"
        assert document.matched_user_account is None
        assert document.invoice_direction == "unknown"
        assert document.extracted_partner == "Office Supplies GmbH"

    def test_outgoing_via_source_iban(
        self, orchestrator, store, provider, make_extraction, pdf_text
    ) -> None:
        """Should match the owner through a connected bank account IBAN."""
        store.save_user_identity(UserIdentity(owner_id="owner-1"))
        store.save_source(
            BankSource(id="src-1", owner_id="owner-1", iban="AT611904300234573201")
        )
        provider.extract.return_value = make_extraction(
            issuer=ExtractedEntity(name="Muster", iban="AT611904300234573201"),
            recipient=ExtractedEntity(name="Client AG"),
        )

        result = orchestrator.run("doc-1")

        assert result.invoice_direction == "outgoing"
        assert store.get_document("doc-1").extracted_partner == "Client AG"


class TestClassification:
    """Model classification and overrides."""

    def test_model_used_when_text_uncertain(
        self, orchestrator, store, classifier, pdf_text
    ) -> None:
        result = orchestrator.run("doc-1", options=ExtractionRunOptions(api_key="sk-owner"))

        assert result.classification_source == "model"
        classifier.classify.assert_called_once_with(
            b"%PDF-1.4 test", "application/pdf", ExtractionOptions(api_key="sk-owner")
        )
        assert [r.phase for r in store.usage] == ["classification", "extraction"]

    def test_model_not_invoice_nulls_fields(
        self, orchestrator, store, provider, classifier, make_classification, pdf_text
    ) -> None:
        """Should clear every extracted field for a non-invoice."""
        store.update_document(
            "doc-1",
            {"extracted_amount": 500, "extracted_partner": "Old", "extraction_error": "boom"},
        )
        classifier.classify.return_value = make_classification(False, reason="Bank statement")

        result = orchestrator.run("doc-1")

        document = store.get_document("doc-1")
        assert result.is_invoice is False
        provider.extract.assert_not_called()
        assert document.is_not_invoice is True
        assert document.not_invoice_reason == "Bank statement"
        assert document.extraction_complete is True
        assert document.extraction_error is None
        for field in EXTRACTED_FIELDS:
            assert getattr(document, field) is None

    def test_skip_classification(self, orchestrator, store, classifier, pdf_text) -> None:
        result = orchestrator.run("doc-1", options=ExtractionRunOptions(skip_classification=True))

        assert result.classification_source == "user"
        classifier.classify.assert_not_called()
        pdf_text.assert_not_called()
        assert store.get_document("doc-1").is_not_invoice is False

    def test_text_classifier_disabled(
        self, store, storage, provider, classifier, document, pdf_text
    ) -> None:
        """Should always ask the model when the text pre-classifier is off."""
        pdf_text.return_value = ANNUAL_STATEMENT_TEXT
        store.save_document(document)
        orchestrator = ExtractionOrchestrator(
            Settings(_env_file=None, text_classifier_enabled=False),
            store,
            storage,
            provider,
            classifier,
        )

        result = orchestrator.run("doc-1")

        assert result.classification_source == "model"
        classifier.classify.assert_called_once()

    def test_text_classifier_error_falls_back_to_model(
        self, orchestrator, store, classifier, pdf_text
    ) -> None:
        """Should ask the model when the text pre-classifier raises."""
        with patch(
            "services.extraction.orchestrator.classify_by_text", side_effect=KeyError("/Root")
        ):
            result = orchestrator.run("doc-1")

        assert result.is_invoice is True
        assert result.classification_source == "model"
        classifier.classify.assert_called_once()
        assert store.get_document("doc-1").extraction_complete is True


class TestExtractionWrite:
    """Consolidated extraction results."""

    def test_options_passed_to_provider(self, orchestrator, provider, pdf_text) -> None:
        orchestrator.run(
            "doc-1", options=ExtractionRunOptions(provider_model="gpt-4o", api_key="sk-owner")
        )

        provider.extract.assert_called_once_with(
            b"%PDF-1.4 test",
            "application/pdf",
            ExtractionOptions(model="gpt-4o", api_key="sk-owner"),
        )

    def test_field_locations_from_layout(
        self, orchestrator, store, provider, make_extraction, pdf_text
    ) -> None:
        """Should map raw values onto OCR blocks when the provider gave no boxes."""
        extraction = make_extraction(issuer=SUPPLIER, provider="ocr-parse")
        extraction.fields.raw = ExtractedRaw(amount="€149,99")
        extraction.layout_blocks = [
            LayoutBlock(
                text="Gesamt €149,99",
                bounding_box=BoundingBox(
                    vertices=[
                        Vertex(x=0.6, y=0.8),
                        Vertex(x=0.9, y=0.8),
                        Vertex(x=0.9, y=0.82),
                        Vertex(x=0.6, y=0.82),
                    ]
                ),
            )
        ]
        provider.extract.return_value = extraction

        orchestrator.run("doc-1")

        document = store.get_document("doc-1")
        amount = next(loc for loc in document.extracted_field_locations if loc.field == "amount")
        assert amount.bounding_box is not None
        assert document.extraction_provider == "ocr-parse"
        assert document.extracted_raw.amount == "€149,99"

    def test_usage_ledger_failure_ignored(self, orchestrator, store, pdf_text) -> None:
        """Should complete the run when the usage ledger is unavailable."""
        with patch.object(store, "append_usage", side_effect=RuntimeError("ledger down")):
            result = orchestrator.run("doc-1")

        assert result.is_invoice is True
        assert store.get_document("doc-1").extraction_complete is True


class TestFailures:
    """Failure recording."""

    def test_missing_document(self, orchestrator) -> None:
        with pytest.raises(DocumentNotFoundError):
            orchestrator.run("missing")

    def test_missing_storage_path(self, orchestrator, store, storage) -> None:
        store.save_document(Document(id="doc-2", owner_id="owner-1"))

        with pytest.raises(MissingStoragePathError):
            orchestrator.run("doc-2")
        storage.download_bytes.assert_not_called()

    def test_download_failure(self, orchestrator, store, storage, classifier) -> None:
        storage.download_bytes.return_value = DownloadResult(
            success=False, error="S3 error: NoSuchKey - missing"
        )

        with pytest.raises(ExtractionFailedError) as exc_info:
            orchestrator.run("doc-1")

        assert isinstance(exc_info.value.__cause__, StorageDownloadError)
        document = store.get_document("doc-1")
        assert "NoSuchKey" in document.extraction_error
        assert document.classification_complete is False
        assert document.extraction_complete is False
        classifier.classify.assert_not_called()

    def test_classification_failure(self, orchestrator, store, classifier, pdf_text) -> None:
        """Should record the error without completing extraction."""
        classifier.classify.side_effect = ExtractionProviderError("Model returned invalid JSON")

        with pytest.raises(ExtractionFailedError) as exc_info:
            orchestrator.run("doc-1")

        document = store.get_document("doc-1")
        assert exc_info.value.document_id == "doc-1"
        assert document.extraction_error == "Classification failed: Model returned invalid JSON"
        assert document.classification_complete is False
        assert document.extraction_complete is False

    def test_extraction_failure(self, orchestrator, store, provider, pdf_text) -> None:
        """Should complete extraction with the error recorded."""
        provider.extract.side_effect = EmptyDocumentError("OCR returned no text")

        with pytest.raises(ExtractionFailedError):
            orchestrator.run("doc-1")

        document = store.get_document("doc-1")
        assert document.classification_complete is True
        assert document.extraction_complete is True
        assert document.extraction_error == "OCR returned no text"
        assert document.extracted_amount is None
