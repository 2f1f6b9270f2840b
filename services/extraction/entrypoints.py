"""Externally callable extraction operations: trigger, retry, mark-as-invoice.

Preconditions are checked before any state is touched. Retry resets the
document's pipeline state and then re-invokes the orchestrator.
"""

import logging
from typing import Any, Literal

from services.extraction.orchestrator import (
    ExtractionOrchestrator,
    ExtractionRunOptions,
    ExtractionRunResult,
)
from services.shared.errors import (
    AlreadyExtractedError,
    DocumentNotFoundError,
    MissingStoragePathError,
)
from services.store.base import RecordStore
from services.store.models import Document

logger = logging.getLogger(__name__)

RetryReason = Literal["force", "error", "user_override"]


def retry_reason(document: Document, force: bool = False) -> RetryReason | None:
    """Why a retry is allowed, or None if it is not.

    Precedence: force, then a user override (the document was classified
    not-invoice, or the user marked it as an invoice and no clean run has
    completed since), then a recorded error.
    """
    if force:
        return "force"
    if document.is_not_invoice is True:
        return "user_override"
    clean_run = document.extraction_complete and not document.extraction_error
    if document.marked_as_invoice_by_user and not clean_run:
        return "user_override"
    if document.extraction_error:
        return "error"
    return None


def reset_fields(document: Document) -> dict[str, Any]:
    """Fields cleared before a retry; manual match assignments survive."""
    fields: dict[str, Any] = {
        "extraction_complete": False,
        "extraction_completed_at": None,
        "extraction_error": None,
        "is_not_invoice": None,
        "not_invoice_reason": None,
    }
    if document.partner_matched_by != "manual":
        fields.update(
            partner_match_complete=False,
            partner_matched_at=None,
            partner_suggestions=[],
            partner_id=None,
            partner_type=None,
            partner_matched_by=None,
            partner_match_confidence=None,
        )
    if document.transaction_matched_by != "manual":
        fields.update(
            transaction_match_complete=False,
            transaction_matched_at=None,
            transaction_suggestions=[],
        )
    return fields


class ExtractionEntryPoints:
    """Upload trigger and user-facing retry operations."""

    def __init__(self, store: RecordStore, orchestrator: ExtractionOrchestrator) -> None:
        self.store = store
        self.orchestrator = orchestrator

    def _load(self, document_id: str) -> Document:
        document = self.store.get_document(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        if not document.storage_path:
            raise MissingStoragePathError(document_id)
        return document

    def trigger(self, document_id: str) -> ExtractionRunResult:
        """Run the pipeline for a freshly uploaded document.

        Raises:
            DocumentNotFoundError: If the document does not exist
            MissingStoragePathError: If the document has no storage path
            ExtractionFailedError: If a provider call failed
        """
        document = self._load(document_id)
        logger.info(f"Extraction triggered for {document_id}")
        return self.orchestrator.run(document_id, document)

    def retry(self, document_id: str, force: bool = False) -> ExtractionRunResult:
        """Reset and re-run extraction.

        Args:
            document_id: Document to retry
            force: Re-run even after a clean extraction

        Returns:
            ExtractionRunResult of the new run

        Raises:
            DocumentNotFoundError: If the document does not exist
            MissingStoragePathError: If the document has no storage path
            AlreadyExtractedError: If extraction completed cleanly and no retry
                reason applies
            ExtractionFailedError: If the new run failed
        """
        document = self._load(document_id)
        reason = retry_reason(document, force)
        if reason is None and document.extraction_complete:
            raise AlreadyExtractedError(document_id)

        logger.info(f"Retrying extraction for {document_id}: {reason or 'incomplete'}")
        self.store.update_document(document_id, reset_fields(document))

        refreshed = self.store.get_document(document_id)
        return self.orchestrator.run(
            document_id,
            refreshed,
            ExtractionRunOptions(skip_classification=reason == "user_override"),
        )

    def mark_as_invoice(self, document_id: str) -> ExtractionRunResult:
        """Override a not-invoice verdict and extract the document.

        Raises:
            DocumentNotFoundError: If the document does not exist
            MissingStoragePathError: If the document has no storage path
        """
        self._load(document_id)
        self.store.update_document(
            document_id,
            {
                "is_not_invoice": False,
                "marked_as_invoice_by_user": True,
                "extraction_complete": False,
            },
        )
        logger.info(f"Document {document_id} marked as invoice by user")
        return self.retry(document_id)
