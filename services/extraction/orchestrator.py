"""Extraction orchestrator: drives one document through the pipeline.

Phases, each persisted as its own partial update:

1. Download the document bytes from blob storage.
2. Classification: invoice or not. Skipped when the user has already
   asserted the document is an invoice. A high-confidence text verdict
   replaces the model call when the text pre-classifier is enabled.
   ``classification_complete`` is written as soon as the verdict is known.
   A not-invoice verdict clears every extracted field, marks extraction
   complete and ends the run.
3. Extraction through the configured provider.
4. Counterparty resolution against the owner's identity data.
5. One consolidated write of all extraction results.

The orchestrator always runs every phase when invoked; gating repeated runs
is the caller's job (see ExtractionEntryPoints).
"""

import logging
import time
from typing import Any, Literal, Protocol

from pydantic import BaseModel

from services.classification.text_classifier import (
    classify_by_text,
    should_use_text_classification,
)
from services.counterparty.resolver import CounterpartyResolution, resolve_counterparty
from services.extraction.base import (
    DocumentClassifier,
    DocumentExtractionProvider,
    ExtractionOptions,
)
from services.extraction.layout import map_fields_to_blocks
from services.extraction.schema import (
    ExtractedEntity,
    ExtractedEntityRaw,
    ExtractedRaw,
    ProviderExtraction,
)
from services.shared import metrics
from services.shared.config import Settings
from services.shared.errors import (
    DocumentNotFoundError,
    ExtractionFailedError,
    MissingStoragePathError,
    StorageDownloadError,
)
from services.storage.service import DownloadResult
from services.store.base import RecordStore
from services.store.models import Document, utcnow
from services.usage.logger import UsageLogger

logger = logging.getLogger(__name__)

ClassificationSource = Literal["model", "text", "user"]

# Every field that holds extracted data; all are nulled for non-invoices
EXTRACTED_FIELDS: tuple[str, ...] = (
    "extracted_date",
    "extracted_amount",
    "extracted_currency",
    "extracted_vat_percent",
    "extracted_text",
    "extraction_confidence",
    "extraction_provider",
    "extracted_issuer",
    "extracted_recipient",
    "extracted_raw",
    "extracted_fields",
    "extracted_field_locations",
    "extracted_partner",
    "extracted_vat_id",
    "extracted_iban",
    "extracted_address",
    "extracted_website",
    "invoice_direction",
    "matched_user_account",
)


class BlobStorage(Protocol):
    """Blob store dependency: one whole-file download by path."""

    def download_bytes(self, storage_path: str) -> DownloadResult: ...


class ExtractionRunOptions(BaseModel):
    """Options for a single run.

    Attributes:
        skip_classification: Treat the document as an invoice without asking
        provider_model: Model override for the extraction call
        api_key: API key override for all model calls
    """

    skip_classification: bool = False
    provider_model: str | None = None
    api_key: str | None = None


class ExtractionRunResult(BaseModel):
    """Outcome of a successful run (failures raise ExtractionFailedError)."""

    document_id: str
    is_invoice: bool
    classification_source: ClassificationSource
    provider: str | None = None
    invoice_direction: str | None = None
    elapsed_ms: int = 0


class _Verdict(BaseModel):
    is_invoice: bool
    reason: str | None = None
    source: ClassificationSource


class ExtractionOrchestrator:
    """State machine for classification, extraction and counterparty resolution."""

    def __init__(
        self,
        settings: Settings,
        store: RecordStore,
        storage: BlobStorage,
        provider: DocumentExtractionProvider,
        classifier: DocumentClassifier,
        usage_logger: UsageLogger | None = None,
    ) -> None:
        """Initialize orchestrator.

        Args:
            settings: Application settings (text classifier policy)
            store: Record store for documents, identity and sources
            storage: Blob storage holding the uploaded files
            provider: Extraction provider selected at process start
            classifier: Invoice classifier
            usage_logger: Usage ledger writer (defaults to one on ``store``)
        """
        self.settings = settings
        self.store = store
        self.storage = storage
        self.provider = provider
        self.classifier = classifier
        self.usage_logger = usage_logger or UsageLogger(store)

    def run(
        self,
        document_id: str,
        document: Document | None = None,
        options: ExtractionRunOptions | None = None,
    ) -> ExtractionRunResult:
        """Run the full pipeline for one document.

        Args:
            document_id: Document to process
            document: Already loaded record (re-read from the store if omitted)
            options: Per-run options

        Returns:
            ExtractionRunResult

        Raises:
            DocumentNotFoundError: If the document does not exist
            MissingStoragePathError: If the document has no storage path
            ExtractionFailedError: After a download, classification or extraction
                failure has been recorded on the document
        """
        options = options or ExtractionRunOptions()
        start = time.time()

        if document is None:
            document = self.store.get_document(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        if not document.storage_path:
            raise MissingStoragePathError(document_id)

        logger.info(f"Extraction run started for {document_id} ({document.mime_type})")

        content = self._download(document)
        verdict = self._classify(document, content, options)

        if not verdict.is_invoice:
            self._persist_not_invoice(document_id)
            metrics.extraction_runs_total.labels(outcome="not_invoice").inc()
            elapsed_ms = int((time.time() - start) * 1000)
            logger.info(f"Document {document_id} is not an invoice ({elapsed_ms}ms)")
            return ExtractionRunResult(
                document_id=document_id,
                is_invoice=False,
                classification_source=verdict.source,
                elapsed_ms=elapsed_ms,
            )

        extraction = self._extract(document, content, options)
        resolution = self._resolve(document.owner_id, extraction)
        self.store.update_document(document_id, self._extraction_update(extraction, resolution))

        metrics.extraction_runs_total.labels(outcome="invoice").inc()
        elapsed_ms = int((time.time() - start) * 1000)
        logger.info(
            f"Extraction complete for {document_id} via {extraction.provider}: "
            f"direction={resolution.invoice_direction} ({elapsed_ms}ms)"
        )
        return ExtractionRunResult(
            document_id=document_id,
            is_invoice=True,
            classification_source=verdict.source,
            provider=extraction.provider,
            invoice_direction=resolution.invoice_direction,
            elapsed_ms=elapsed_ms,
        )

    def _fail(self, document_id: str, message: str, complete: bool) -> ExtractionFailedError:
        """Record a failure on the document and build the exception to raise.

        ``complete`` marks extraction as finished; it is only set once
        classification has completed.
        """
        fields: dict[str, Any] = {"extraction_error": message}
        if complete:
            fields.update(extraction_complete=True, extraction_completed_at=utcnow())
        self.store.update_document(document_id, fields)
        metrics.extraction_runs_total.labels(outcome="failed").inc()
        logger.error(f"Extraction failed for {document_id}: {message}")
        return ExtractionFailedError(document_id, message)

    def _download(self, document: Document) -> bytes:
        result = self.storage.download_bytes(document.storage_path or "")
        if not result.success or result.data is None:
            cause = StorageDownloadError(result.error or "empty object")
            raise self._fail(document.id, f"Download failed: {cause}", complete=False) from cause
        return result.data

    def _classify(
        self, document: Document, content: bytes, options: ExtractionRunOptions
    ) -> _Verdict:
        if options.skip_classification:
            verdict = _Verdict(is_invoice=True, source="user")
        else:
            verdict = self._text_verdict(content, document.mime_type) or self._model_verdict(
                document, content, options
            )

        self.store.update_document(
            document.id,
            {
                "classification_complete": True,
                "classification_completed_at": utcnow(),
                "is_not_invoice": not verdict.is_invoice,
                "not_invoice_reason": None if verdict.is_invoice else verdict.reason,
            },
        )
        metrics.classification_decisions_total.labels(
            source=verdict.source, verdict="invoice" if verdict.is_invoice else "not_invoice"
        ).inc()
        return verdict

    def _text_verdict(self, content: bytes, mime_type: str) -> _Verdict | None:
        if not self.settings.text_classifier_enabled:
            return None
        try:
            result = classify_by_text(
                content, mime_type, max_pages=self.settings.text_classifier_max_pages
            )
        except Exception as e:
            logger.warning(f"Text classification failed, falling back to model: {e}")
            return None
        if not should_use_text_classification(result):
            return None
        logger.info(f"Using text classification: {result.signals}")
        return _Verdict(
            is_invoice=result.is_likely_invoice,
            reason=None if result.is_likely_invoice else "; ".join(result.signals),
            source="text",
        )

    def _model_verdict(
        self, document: Document, content: bytes, options: ExtractionRunOptions
    ) -> _Verdict:
        start = time.time()
        try:
            result = self.classifier.classify(
                content, document.mime_type, ExtractionOptions(api_key=options.api_key)
            )
        except Exception as e:
            raise self._fail(document.id, f"Classification failed: {e}", complete=False) from e

        self.usage_logger.log(document.owner_id, "classification", result.token_usage, document.id)
        logger.info(
            f"Classification for {document.id} took {(time.time() - start) * 1000:.0f}ms: "
            f"is_invoice={result.is_invoice}"
        )
        return _Verdict(is_invoice=result.is_invoice, reason=result.reason, source="model")

    def _persist_not_invoice(self, document_id: str) -> None:
        fields: dict[str, Any] = {name: None for name in EXTRACTED_FIELDS}
        fields.update(
            extraction_complete=True,
            extraction_completed_at=utcnow(),
            extraction_error=None,
        )
        self.store.update_document(document_id, fields)

    def _extract(
        self, document: Document, content: bytes, options: ExtractionRunOptions
    ) -> ProviderExtraction:
        start = time.time()
        try:
            extraction = self.provider.extract(
                content,
                document.mime_type,
                ExtractionOptions(model=options.provider_model, api_key=options.api_key),
            )
        except Exception as e:
            raise self._fail(document.id, str(e), complete=True) from e

        self.usage_logger.log(document.owner_id, "extraction", extraction.token_usage, document.id)
        logger.info(
            f"Provider {extraction.provider} extracted {document.id} in "
            f"{(time.time() - start) * 1000:.0f}ms"
        )
        return extraction

    def _resolve(self, owner_id: str, extraction: ProviderExtraction) -> CounterpartyResolution:
        identity = self.store.get_user_identity(owner_id)
        source_ibans = [s.iban for s in self.store.list_active_sources(owner_id) if s.iban]
        return resolve_counterparty(
            extraction.fields.issuer, extraction.fields.recipient, identity, source_ibans
        )

    @staticmethod
    def _extraction_update(
        extraction: ProviderExtraction, resolution: CounterpartyResolution
    ) -> dict[str, Any]:
        fields = extraction.fields
        is_issuer = resolution.counterparty == "issuer"
        counterparty = (fields.issuer if is_issuer else fields.recipient) or ExtractedEntity()
        raw_entity = (
            fields.raw.issuer if is_issuer else fields.raw.recipient
        ) or ExtractedEntityRaw()

        extracted_raw = ExtractedRaw(
            **fields.raw.model_dump(
                exclude={"partner", "vat_id", "iban", "address", "website", "issuer", "recipient"}
            ),
            partner=raw_entity.name,
            vat_id=raw_entity.vat_id,
            iban=raw_entity.iban,
            address=raw_entity.address,
            website=raw_entity.website,
            issuer=fields.raw.issuer,
            recipient=fields.raw.recipient,
        )

        locations = extraction.field_locations
        if not locations:
            locations = map_fields_to_blocks(
                {
                    "date": extracted_raw.date,
                    "amount": extracted_raw.amount,
                    "vat_percent": extracted_raw.vat_percent,
                    "partner": extracted_raw.partner or counterparty.name,
                },
                extraction.layout_blocks,
            )

        return {
            "extracted_date": fields.date,
            "extracted_amount": fields.amount,
            "extracted_currency": fields.currency,
            "extracted_vat_percent": fields.vat_percent,
            "extracted_text": extraction.text,
            "extraction_confidence": round(fields.confidence * 100),
            "extraction_provider": extraction.provider,
            "extraction_error": None,
            "extraction_complete": True,
            "extraction_completed_at": utcnow(),
            "extracted_issuer": fields.issuer,
            "extracted_recipient": fields.recipient,
            "extracted_raw": extracted_raw,
            "extracted_fields": fields.additional_fields,
            "extracted_field_locations": locations,
            "extracted_partner": counterparty.name,
            "extracted_vat_id": counterparty.vat_id,
            "extracted_iban": counterparty.iban,
            "extracted_address": counterparty.address,
            "extracted_website": counterparty.website,
            "invoice_direction": resolution.invoice_direction,
            "matched_user_account": resolution.matched_user_account,
        }
