"""
Prometheus metrics collection.

Metric categories:
- Provider RED metrics: requests by outcome, latency per provider
- Cost metrics: estimated USD spend per provider
- Cache metrics: hits/misses per cache type
- Orchestrator metrics: requests by outcome, queue depth, active requests

Naming follows Prometheus conventions (_total for counters, _seconds for
durations, no suffix for gauges).
"""
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from multimodal.core.logging import get_logger

logger = get_logger(__name__)

registry = REGISTRY

# ============================================================================
# PROVIDER METRICS
# ============================================================================

provider_requests_total = Counter(
    "multimodal_provider_requests_total",
    "Total number of upstream provider calls",
    ["provider", "outcome"],  # outcome: success | error
    registry=registry,
)

provider_request_duration_seconds = Histogram(
    "multimodal_provider_request_duration_seconds",
    "Upstream provider call latency in seconds",
    ["provider"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0],
    registry=registry,
)

provider_cost_usd_total = Counter(
    "multimodal_provider_cost_usd_total",
    "Estimated provider spend in USD",
    ["provider"],
    registry=registry,
)

rate_limit_rejections_total = Counter(
    "multimodal_rate_limit_rejections_total",
    "Requests rejected locally by a client-side rate limiter",
    ["provider"],
    registry=registry,
)

image_generation_timeouts_total = Counter(
    "multimodal_image_generation_timeouts_total",
    "Image generations that lost the race against the timeout",
    registry=registry,
)

# ============================================================================
# CACHE METRICS
# ============================================================================

cache_hits_total = Counter(
    "multimodal_cache_hits_total",
    "Total number of cache hits",
    ["cache_type"],  # chat, web_search, image_search, image_generation, multimodal
    registry=registry,
)

cache_misses_total = Counter(
    "multimodal_cache_misses_total",
    "Total number of cache misses",
    ["cache_type"],
    registry=registry,
)

# ============================================================================
# ORCHESTRATOR METRICS
# ============================================================================

orchestrator_requests_total = Counter(
    "multimodal_orchestrator_requests_total",
    "Total number of orchestrated requests",
    ["outcome"],  # success | cache_hit | error
    registry=registry,
)

orchestrator_queue_depth = Gauge(
    "multimodal_orchestrator_queue_depth",
    "Requests waiting for a dispatch slot",
    registry=registry,
)

orchestrator_active_requests = Gauge(
    "multimodal_orchestrator_active_requests",
    "Requests currently dispatched",
    registry=registry,
)


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def record_provider_request(provider: str, outcome: str, duration_seconds: float) -> None:
    """
    Record one upstream call.

    Args:
        provider: Provider label (e.g. "openai_chat", "serper", "unsplash")
        outcome: "success" or "error"
        duration_seconds: Wall time of the call
    """
    provider_requests_total.labels(provider=provider, outcome=outcome).inc()
    provider_request_duration_seconds.labels(provider=provider).observe(duration_seconds)


def record_provider_cost(provider: str, cost_usd: float) -> None:
    """Add estimated spend for a provider (ignored when not positive)."""
    if cost_usd > 0:
        provider_cost_usd_total.labels(provider=provider).inc(cost_usd)


def record_rate_limit_rejection(provider: str) -> None:
    rate_limit_rejections_total.labels(provider=provider).inc()


def record_generation_timeout() -> None:
    image_generation_timeouts_total.inc()


def record_cache_hit(cache_type: str) -> None:
    cache_hits_total.labels(cache_type=cache_type).inc()


def record_cache_miss(cache_type: str) -> None:
    cache_misses_total.labels(cache_type=cache_type).inc()


def record_orchestrator_request(outcome: str) -> None:
    orchestrator_requests_total.labels(outcome=outcome).inc()


def update_orchestrator_load(active: int, queued: int) -> None:
    """Publish the dispatch counter and queue length."""
    orchestrator_active_requests.set(active)
    orchestrator_queue_depth.set(queued)


def get_metrics() -> bytes:
    """Prometheus exposition text."""
    return generate_latest(registry)


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
