"""AI usage ledger writer.

Every model call is recorded with the calling owner, model and token counts
for cost accounting. Ledger writes are fire-and-forget: a failure is logged
and never propagates into the pipeline.
"""

import logging

from services.extraction.schema import TokenUsage
from services.shared import metrics
from services.store.base import RecordStore
from services.store.models import UsageRecord

logger = logging.getLogger(__name__)


class UsageLogger:
    """Appends UsageRecord entries to the store's usage ledger."""

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    def log(
        self,
        owner_id: str,
        phase: str,
        usage: TokenUsage | None,
        document_id: str | None = None,
    ) -> None:
        """Record one model call.

        Args:
            owner_id: Owner the call was made for
            phase: Pipeline phase ("classification", "extraction")
            usage: Token usage returned by the provider (None is ignored)
            document_id: Document being processed
        """
        if usage is None:
            return

        metrics.ai_tokens_total.labels(phase=phase, model=usage.model, direction="input").inc(
            usage.input_tokens
        )
        metrics.ai_tokens_total.labels(phase=phase, model=usage.model, direction="output").inc(
            usage.output_tokens
        )

        try:
            self.store.append_usage(
                UsageRecord(
                    owner_id=owner_id,
                    phase=phase,
                    model=usage.model,
                    input_tokens=usage.input_tokens,
                    output_tokens=usage.output_tokens,
                    document_id=document_id,
                )
            )
        except Exception as e:
            logger.warning(f"Failed to record {phase} usage for {owner_id}: {e}")
