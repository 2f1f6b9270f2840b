"""Async task definitions for the document pipeline.

Uses arq (async Redis queue) for background task processing. Uploads
enqueue ``process_document``; a finished invoice enqueues
``match_document``. Reconciliation jobs are keyed by owner so that at most
one ``localize_partners`` job per owner is queued or running.

The pipeline is synchronous, so each task runs it in a worker thread to
keep the event loop free for the other concurrent jobs.

Based on arq documentation:
https://arq-docs.helpmanual.io/
"""

import asyncio
import logging
from typing import Any

from arq.connections import ArqRedis, RedisSettings
from arq.jobs import Job

from services.shared.config import get_settings
from services.shared.container import Pipeline, build_pipeline
from services.shared.errors import PipelineError

logger = logging.getLogger(__name__)


def localize_job_id(owner_id: str) -> str:
    return f"localize:{owner_id}"


async def enqueue_document(redis: ArqRedis, document_id: str) -> Job | None:
    """Queue extraction of a freshly uploaded document."""
    return await redis.enqueue_job("process_document", document_id)


async def enqueue_localize(redis: ArqRedis, owner_id: str) -> Job | None:
    """Queue reconciliation for an owner.

    Returns:
        The job, or None if a job for this owner is already queued or running
    """
    job = await redis.enqueue_job(
        "localize_partners", owner_id, _job_id=localize_job_id(owner_id)
    )
    if job is None:
        logger.info(f"Localization for {owner_id} already queued")
    return job


def _pipeline(ctx: dict[str, Any]) -> Pipeline:
    pipeline: Pipeline | None = ctx.get("pipeline")
    if pipeline is None:
        pipeline = ctx["pipeline"] = build_pipeline(get_settings())
    return pipeline


async def process_document(ctx: dict[str, Any], document_id: str) -> dict[str, Any]:
    """Classify and extract an uploaded document.

    Args:
        ctx: arq context (contains redis connection and the pipeline)
        document_id: Document to process

    Returns:
        Job summary as dict
    """
    logger.info(f"Processing document {document_id}")
    pipeline = _pipeline(ctx)
    try:
        result = await asyncio.to_thread(pipeline.entrypoints.trigger, document_id)
    except PipelineError as e:
        logger.error(f"Processing of {document_id} failed: {e}")
        return {"document_id": document_id, "status": "failed", "error": str(e)}

    if result.is_invoice:
        await ctx["redis"].enqueue_job("match_document", document_id)
    return {"document_id": document_id, "status": "completed", **result.model_dump()}


async def retry_document(
    ctx: dict[str, Any], document_id: str, force: bool = False
) -> dict[str, Any]:
    """Reset and re-run extraction in the background."""
    pipeline = _pipeline(ctx)
    try:
        result = await asyncio.to_thread(pipeline.entrypoints.retry, document_id, force=force)
    except PipelineError as e:
        logger.error(f"Retry of {document_id} failed: {e}")
        return {"document_id": document_id, "status": "failed", "error": str(e)}

    if result.is_invoice:
        await ctx["redis"].enqueue_job("match_document", document_id)
    return {"document_id": document_id, "status": "completed", **result.model_dump()}


async def match_document(ctx: dict[str, Any], document_id: str) -> dict[str, Any]:
    """Partner matching followed by transaction matching.

    Transaction matching runs second so it can use an auto-assigned partner.
    """
    pipeline = _pipeline(ctx)
    try:
        partners = await asyncio.to_thread(pipeline.matching.match_document_partner, document_id)
        transactions = await asyncio.to_thread(
            pipeline.matching.match_document_transactions, document_id
        )
    except PipelineError as e:
        logger.error(f"Matching of {document_id} failed: {e}")
        return {"document_id": document_id, "status": "failed", "error": str(e)}

    return {
        "document_id": document_id,
        "status": "completed",
        "partner_suggestions": len(partners),
        "transaction_suggestions": len(transactions),
    }


async def localize_partners(ctx: dict[str, Any], owner_id: str) -> dict[str, Any]:
    """Run the global-to-local partner reconciliation for one owner."""
    result = await asyncio.to_thread(_pipeline(ctx).localizer.localize, owner_id)
    return {"owner_id": owner_id, **result.model_dump()}


async def startup(ctx: dict[str, Any]) -> None:
    """Worker startup hook - build the pipeline once per worker."""
    logger.info("Initializing worker pipeline...")
    ctx["pipeline"] = build_pipeline(get_settings())
    logger.info("Worker pipeline initialized")


async def shutdown(ctx: dict[str, Any]) -> None:
    """Worker shutdown hook."""
    logger.info("Worker shutting down...")


def get_redis_settings() -> RedisSettings:
    """Get arq Redis settings from configuration."""
    return RedisSettings.from_dsn(get_settings().redis_url)


class WorkerSettings:
    """arq worker settings.

    Defines the worker configuration including:
    - Task functions to register
    - Redis connection settings
    - Job timeout and concurrency
    """

    functions = [process_document, retry_document, match_document, localize_partners]
    on_startup = startup
    on_shutdown = shutdown

    # These will be set from environment
    redis_settings: RedisSettings | None = None
    max_jobs = 10
    job_timeout = 300
