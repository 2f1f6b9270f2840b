"""Unit tests for the AI usage ledger."""

from unittest.mock import MagicMock

from prometheus_client import REGISTRY

from services.extraction.schema import TokenUsage
from services.store.memory import InMemoryStore
from services.usage.logger import UsageLogger


def _token_count(phase: str, model: str, direction: str) -> float:
    value = REGISTRY.get_sample_value(
        "ai_tokens_total",
        {"phase": phase, "model": model, "direction": direction},
    )
    return value or 0.0


def test_records_usage(store: InMemoryStore) -> None:
    """Should append one ledger entry per call."""
    UsageLogger(store).log(
        "owner-1",
        "extraction",
        TokenUsage(model="gpt-4o", input_tokens=1200, output_tokens=300),
        document_id="doc-1",
    )

    [record] = store.list_usage("owner-1")
    assert record.phase == "extraction"
    assert record.model == "gpt-4o"
    assert (record.input_tokens, record.output_tokens) == (1200, 300)
    assert record.document_id == "doc-1"


def test_counts_tokens_in_metrics(store: InMemoryStore) -> None:
    before = _token_count("classification", "usage-test-model", "input")

    UsageLogger(store).log(
        "owner-1",
        "classification",
        TokenUsage(model="usage-test-model", input_tokens=800, output_tokens=20),
    )

    assert _token_count("classification", "usage-test-model", "input") == before + 800


def test_none_usage_ignored(store: InMemoryStore) -> None:
    """Should skip calls that did not reach a model."""
    UsageLogger(store).log("owner-1", "extraction", None)

    assert store.list_usage("owner-1") == []


def test_store_failure_swallowed() -> None:
    """Should log and carry on when the ledger write fails."""
    store = MagicMock()
    store.append_usage.side_effect = ConnectionError("redis down")

    UsageLogger(store).log("owner-1", "extraction", TokenUsage(model="gpt-4o"))

    store.append_usage.assert_called_once()
