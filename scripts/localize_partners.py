#!/usr/bin/env python3
"""Run the global-to-local partner reconciliation for one owner.

With ``--enqueue`` the job is handed to the arq worker instead of running
in this process; only one job per owner can be queued at a time.

Usage:
    python scripts/localize_partners.py OWNER_ID
    python scripts/localize_partners.py OWNER_ID --enqueue

Requirements:
    - APP_STORE_BACKEND=redis so the job sees the worker's records
"""

import asyncio
import logging

from arq import create_pool

from services.queue.tasks import enqueue_localize, get_redis_settings
from services.shared.config import get_settings
from services.shared.container import build_pipeline
from services.shared.logging import configure_logging

logger = logging.getLogger(__name__)


async def enqueue(owner_id: str) -> None:
    redis = await create_pool(get_redis_settings())
    try:
        job = await enqueue_localize(redis, owner_id)
        if job is None:
            print(f"A localization job for {owner_id} is already queued")
        else:
            print(f"Queued job {job.job_id}")
    finally:
        await redis.close()


def run(owner_id: str) -> None:
    settings = get_settings()
    if settings.store_backend == "memory":
        logger.warning("In-memory store selected; nothing will be persisted")
    result = build_pipeline(settings).localizer.localize(owner_id)
    print(f"Partners created:     {result.partners_created}")
    print(f"Transactions updated: {result.transactions_updated}")
    print(f"Suggestions updated:  {result.suggestions_updated}")
    if result.failed_groups:
        print(f"Failed global partners: {', '.join(result.failed_groups)}")


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Localize global partner assignments")
    parser.add_argument("owner_id", help="Owner whose transactions are reconciled")
    parser.add_argument(
        "--enqueue",
        action="store_true",
        help="Queue the job for the worker instead of running it here",
    )

    args = parser.parse_args()
    configure_logging(get_settings())

    if args.enqueue:
        asyncio.run(enqueue(args.owner_id))
    else:
        run(args.owner_id)
