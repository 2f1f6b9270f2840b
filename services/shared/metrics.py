"""Prometheus metrics for the API and the extraction pipeline.

Exposes key metrics for monitoring:
- Request counts by endpoint and status
- Request duration histograms
- Extraction run outcomes and provider latency
- AI token consumption
- Global-to-local partner reconciliation

Based on Prometheus best practices:
https://prometheus.io/docs/practices/naming/
"""

from prometheus_client import Counter, Histogram, generate_latest
from prometheus_client.openmetrics.exposition import CONTENT_TYPE_LATEST

# Request metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# Pipeline metrics
extraction_runs_total = Counter(
    "extraction_runs_total",
    "Total orchestrator runs",
    ["outcome"],  # invoice, not_invoice, failed
)

classification_decisions_total = Counter(
    "classification_decisions_total",
    "Invoice classification decisions",
    ["source", "verdict"],  # source: model, text, user
)

provider_call_duration_seconds = Histogram(
    "provider_call_duration_seconds",
    "AI provider call duration in seconds",
    ["phase", "provider"],
    buckets=(0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0),
)

ai_tokens_total = Counter(
    "ai_tokens_total",
    "AI tokens consumed",
    ["phase", "model", "direction"],  # direction: input, output
)

# Reconciliation metrics
local_partners_created_total = Counter(
    "local_partners_created_total",
    "Local partners created from global partners",
)

transactions_localized_total = Counter(
    "transactions_localized_total",
    "Transactions moved from a global to a local partner",
)


def get_metrics() -> tuple[bytes, str]:
    """Generate Prometheus metrics in text format.

    Returns:
        Tuple of (metrics bytes, content type)
    """
    return generate_latest(), CONTENT_TYPE_LATEST
