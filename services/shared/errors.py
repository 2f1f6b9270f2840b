"""Exception hierarchy for the document pipeline.

Input errors are raised before any provider call or state change. Provider
errors come out of the extraction clients; the orchestrator records them on
the document and re-raises them as ExtractionFailedError.
"""


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class DocumentNotFoundError(PipelineError):
    """Raised when a document id does not resolve to a record."""

    def __init__(self, document_id: str) -> None:
        super().__init__(f"Document not found: {document_id}")
        self.document_id = document_id


class MissingStoragePathError(PipelineError):
    """Raised when a document has no blob storage pointer."""

    def __init__(self, document_id: str) -> None:
        super().__init__(f"No storage path found for document {document_id}")
        self.document_id = document_id


class AlreadyExtractedError(PipelineError):
    """Raised when a retry is requested for a cleanly extracted document."""

    def __init__(self, document_id: str) -> None:
        super().__init__(f"Document {document_id} has already been extracted successfully")
        self.document_id = document_id


class StorageDownloadError(PipelineError):
    """Raised when the document bytes cannot be fetched from blob storage."""


class ExtractionProviderError(PipelineError):
    """Raised by provider clients on malformed output or transport failure."""

    def __init__(self, message: str, provider: str | None = None) -> None:
        super().__init__(message)
        self.provider = provider


class EmptyDocumentError(ExtractionProviderError):
    """Raised when OCR or the vision model yields no text at all."""


class ExtractionFailedError(PipelineError):
    """Raised by the orchestrator after a failure has been written to the document."""

    def __init__(self, document_id: str, message: str) -> None:
        super().__init__(message)
        self.document_id = document_id


class TransactionNotFoundError(PipelineError):
    """Raised when a transaction id does not resolve to a record."""

    def __init__(self, transaction_id: str) -> None:
        super().__init__(f"Transaction not found: {transaction_id}")
        self.transaction_id = transaction_id


class GlobalPartnerNotFoundError(PipelineError):
    """Raised when a transaction references a global partner that no longer exists."""

    def __init__(self, global_partner_id: str) -> None:
        super().__init__(f"Global partner not found: {global_partner_id}")
        self.global_partner_id = global_partner_id
