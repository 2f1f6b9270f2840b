"""FastAPI application for the invoice inference pipeline.

Exposes:
- Health and readiness checks for Kubernetes
- Document upload, extraction, retry and mark-as-invoice
- Partner, transaction and category matching
- Global-to-local partner reconciliation
- Prometheus metrics for monitoring

Pipeline calls run synchronously in FastAPI's threadpool, or are handed to
the arq worker when the queue is enabled.

Based on FastAPI best practices:
https://fastapi.tiangolo.com/
"""

import hashlib
import logging
import time
import uuid
from pathlib import Path
from typing import Any

from arq import create_pool
from fastapi import (
    FastAPI,
    File,
    Form,
    HTTPException,
    Query,
    Request,
    Response,
    UploadFile,
    status,
)
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from services.extraction.orchestrator import ExtractionRunResult
from services.queue.tasks import enqueue_document, enqueue_localize, get_redis_settings
from services.reconciliation.localize import LocalizationResult
from services.shared import metrics
from services.shared.config import get_settings
from services.shared.container import build_pipeline
from services.shared.errors import (
    AlreadyExtractedError,
    DocumentNotFoundError,
    ExtractionFailedError,
    MissingStoragePathError,
    PipelineError,
    TransactionNotFoundError,
)
from services.shared.logging import configure_logging
from services.store.models import (
    CategorySuggestion,
    Document,
    PartnerSuggestion,
    TransactionSuggestion,
)

settings = get_settings()
configure_logging(settings)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Invoice Inference Pipeline",
    description="Invoice classification, extraction and matching API",
    version=settings.service_version,
)

pipeline = build_pipeline(settings)
_queue_pool: Any = None


async def get_queue() -> Any:
    """Lazily create the arq Redis pool."""
    global _queue_pool
    if _queue_pool is None:
        _queue_pool = await create_pool(get_redis_settings())
    return _queue_pool


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Middleware to collect request metrics.

    Tracks:
    - Request count by method, endpoint, and status
    - Request duration by method and endpoint
    """
    # Skip metrics for /metrics endpoint itself
    if request.url.path == "/metrics":
        return await call_next(request)

    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    # Label by route template, not by the concrete document id
    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)

    metrics.http_requests_total.labels(
        method=request.method,
        endpoint=endpoint,
        status=response.status_code,
    ).inc()

    metrics.http_request_duration_seconds.labels(
        method=request.method,
        endpoint=endpoint,
    ).observe(duration)

    return response


_STATUS_BY_ERROR: list[tuple[type[PipelineError], int]] = [
    (DocumentNotFoundError, status.HTTP_404_NOT_FOUND),
    (TransactionNotFoundError, status.HTTP_404_NOT_FOUND),
    (MissingStoragePathError, status.HTTP_400_BAD_REQUEST),
    (AlreadyExtractedError, status.HTTP_409_CONFLICT),
    (ExtractionFailedError, status.HTTP_502_BAD_GATEWAY),
]


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    """Map pipeline errors onto HTTP status codes."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            status_code = code
            break
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    service: str


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool
    storage: bool


class UploadResponse(BaseModel):
    """Document upload response.

    Attributes:
        document_id: Id of the created document
        storage_path: Where the bytes were stored
        queued: Whether extraction was handed to the worker
        result: Extraction result when processed inline
    """

    document_id: str
    storage_path: str
    queued: bool = False
    result: ExtractionRunResult | None = None


class LocalizeResponse(BaseModel):
    """Reconciliation response.

    Attributes:
        queued: Whether the job was handed to the worker
        job_id: Queue job id when queued
        result: Reconciliation outcome when run inline
    """

    queued: bool = False
    job_id: str | None = None
    result: LocalizationResult | None = None


@app.get("/health", response_model=HealthResponse, tags=["Health"])
def health_check() -> HealthResponse:
    """Health check endpoint for liveness probe."""
    return HealthResponse(
        status="healthy", version=settings.service_version, service=settings.service_name
    )


@app.get("/ready", response_model=ReadinessResponse, tags=["Health"])
def readiness_check() -> ReadinessResponse:
    """Readiness check endpoint for Kubernetes readiness probe.

    Storage is only checked when it is enabled.
    """
    storage_ok = pipeline.storage.health_check() if settings.storage_enabled else True
    return ReadinessResponse(ready=storage_ok, storage=storage_ok)


@app.get("/metrics", tags=["Monitoring"])
def get_metrics() -> Response:
    """Prometheus metrics endpoint."""
    metrics_data, content_type = metrics.get_metrics()
    return Response(content=metrics_data, media_type=content_type)


@app.post(
    "/api/v1/documents",
    response_model=UploadResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Documents"],
)
async def upload_document(
    file: UploadFile = File(..., description="PDF or image file"),  # noqa: B008
    owner_id: str = Form(..., description="Owner of the document"),  # noqa: B008
) -> UploadResponse:
    """Store a document and start the pipeline.

    The file is written to blob storage, a document record is created and
    extraction is either enqueued (queue enabled) or run inline.

    Raises:
        HTTPException: 400 for an empty upload, 503 if storage is unavailable
    """
    if not file.filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No filename provided")

    content = await file.read()
    if not content:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty file")

    document_id = uuid.uuid4().hex
    mime_type = file.content_type or "application/octet-stream"
    object_name = f"{owner_id}/{document_id}{Path(file.filename).suffix}"
    stored = await run_in_threadpool(
        pipeline.storage.upload_bytes, content, object_name, mime_type
    )
    if not stored.success or not stored.storage_path:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Storage failed: {stored.error}",
        )

    document = Document(
        id=document_id,
        owner_id=owner_id,
        storage_path=stored.storage_path,
        size=len(content),
        mime_type=mime_type,
        content_hash=hashlib.sha256(content).hexdigest(),
        file_name=file.filename,
    )
    pipeline.store.save_document(document)
    logger.info(f"Stored document {document_id} for {owner_id} at {stored.storage_path}")

    if settings.queue_enabled:
        await enqueue_document(await get_queue(), document_id)
        return UploadResponse(
            document_id=document_id, storage_path=stored.storage_path, queued=True
        )

    result = await run_in_threadpool(pipeline.entrypoints.trigger, document_id)
    return UploadResponse(document_id=document_id, storage_path=stored.storage_path, result=result)


@app.get("/api/v1/documents/{document_id}", response_model=Document, tags=["Documents"])
def get_document(document_id: str) -> Document:
    """Return the current document record."""
    document = pipeline.store.get_document(document_id)
    if document is None:
        raise DocumentNotFoundError(document_id)
    return document


@app.post(
    "/api/v1/documents/{document_id}/extract",
    response_model=ExtractionRunResult,
    tags=["Documents"],
)
def extract_document(document_id: str) -> ExtractionRunResult:
    """Run classification and extraction for an existing document."""
    return pipeline.entrypoints.trigger(document_id)


@app.post(
    "/api/v1/documents/{document_id}/retry",
    response_model=ExtractionRunResult,
    tags=["Documents"],
)
def retry_document(
    document_id: str,
    force: bool = Query(False, description="Re-run even after a clean extraction"),
) -> ExtractionRunResult:
    """Reset and re-run extraction.

    Returns 409 when the document was extracted cleanly and ``force`` is not set.
    """
    return pipeline.entrypoints.retry(document_id, force=force)


@app.post(
    "/api/v1/documents/{document_id}/mark-as-invoice",
    response_model=ExtractionRunResult,
    tags=["Documents"],
)
def mark_as_invoice(document_id: str) -> ExtractionRunResult:
    """Override a not-invoice verdict and extract the document."""
    return pipeline.entrypoints.mark_as_invoice(document_id)


@app.post(
    "/api/v1/documents/{document_id}/match-partner",
    response_model=list[PartnerSuggestion],
    tags=["Matching"],
)
def match_partner(document_id: str) -> list[PartnerSuggestion]:
    return pipeline.matching.match_document_partner(document_id)


@app.post(
    "/api/v1/documents/{document_id}/match-transactions",
    response_model=list[TransactionSuggestion],
    tags=["Matching"],
)
def match_transactions(document_id: str) -> list[TransactionSuggestion]:
    return pipeline.matching.match_document_transactions(document_id)


@app.post(
    "/api/v1/transactions/{transaction_id}/match-categories",
    response_model=list[CategorySuggestion],
    tags=["Matching"],
)
def match_categories(transaction_id: str) -> list[CategorySuggestion]:
    return pipeline.matching.match_transaction_categories(transaction_id)


@app.post(
    "/api/v1/owners/{owner_id}/localize-partners",
    response_model=LocalizeResponse,
    tags=["Partners"],
)
async def localize_partners(owner_id: str) -> LocalizeResponse:
    """Move the owner's transactions from global to local partners.

    With the queue enabled only one job per owner is queued at a time; a
    second request while one is pending returns ``queued=false``.
    """
    if settings.queue_enabled:
        job = await enqueue_localize(await get_queue(), owner_id)
        return LocalizeResponse(queued=job is not None, job_id=job.job_id if job else None)
    result = await run_in_threadpool(pipeline.localizer.localize, owner_id)
    return LocalizeResponse(result=result)
