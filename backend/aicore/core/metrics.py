"""
Prometheus metrics collection module.

Metrics Categories:
- RED Metrics: Rate, Errors, Duration for the HTTP boundary
- LLM Metrics: provider attempts, fallbacks, structured-output repairs
- Streaming Metrics: relayed events and caller disconnects
- Voice Metrics: active sessions, reconnection attempts, terminal failures

All metrics follow Prometheus naming conventions:
- Counters: _total suffix
- Histograms: _seconds suffix for duration
- Gauges: No special suffix
"""
from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    generate_latest,
    REGISTRY,
    CONTENT_TYPE_LATEST,
)

from aicore.core.logging import get_logger

logger = get_logger(__name__)

registry = REGISTRY

# ============================================================================
# RED METRICS - Rate, Errors, Duration
# ============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total number of HTTP requests",
    ["method", "endpoint", "status"],
    registry=registry,
)

http_errors_total = Counter(
    "http_errors_total",
    "Total number of HTTP errors",
    ["method", "endpoint", "status_code"],
    registry=registry,
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=registry,
)

# ============================================================================
# LLM METRICS
# ============================================================================

llm_requests_total = Counter(
    "llm_requests_total",
    "Total number of provider attempts",
    ["provider", "mode", "outcome"],  # mode: invoke|stream, outcome: success|error|empty
    registry=registry,
)

llm_request_duration_seconds = Histogram(
    "llm_request_duration_seconds",
    "Provider attempt latency in seconds",
    ["provider", "mode"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0],
    registry=registry,
)

llm_provider_errors_total = Counter(
    "llm_provider_errors_total",
    "Total number of provider failures that advanced the fallback chain",
    ["provider", "error_type"],
    registry=registry,
)

llm_all_providers_failed_total = Counter(
    "llm_all_providers_failed_total",
    "Total number of requests where every provider failed",
    ["mode"],
    registry=registry,
)

llm_structured_repairs_total = Counter(
    "llm_structured_repairs_total",
    "Total number of structured-output repair attempts",
    ["schema"],
    registry=registry,
)

llm_structured_failures_total = Counter(
    "llm_structured_failures_total",
    "Total number of terminal structured-output parse failures",
    ["schema"],
    registry=registry,
)

# ============================================================================
# STREAMING METRICS
# ============================================================================

stream_events_total = Counter(
    "stream_events_total",
    "Total number of stream events forwarded to callers",
    ["event_type"],
    registry=registry,
)

stream_cancellations_total = Counter(
    "stream_cancellations_total",
    "Total number of streams cancelled because the caller disconnected",
    registry=registry,
)

# ============================================================================
# VOICE METRICS
# ============================================================================

voice_sessions_active = Gauge(
    "voice_sessions_active",
    "Number of voice sessions currently in the active set",
    registry=registry,
)

voice_reconnect_attempts_total = Counter(
    "voice_reconnect_attempts_total",
    "Total number of voice reconnection attempts",
    ["outcome"],  # success|failure
    registry=registry,
)

voice_sessions_failed_total = Counter(
    "voice_sessions_failed_total",
    "Total number of voice sessions that exhausted reconnection",
    registry=registry,
)


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def normalize_endpoint(path: str) -> str:
    """
    Normalize endpoint path for metrics.

    Replaces session identifiers with placeholders to avoid high cardinality.

    Examples:
        /chat/abc123/history -> /chat/{session_id}/history
        /voice/sessions/abc123/text -> /voice/sessions/{session_id}/text
        /health -> /health
    """
    if "?" in path:
        path = path.split("?")[0]

    parts = path.split("/")
    if path.startswith("/chat/") and len(parts) >= 3 and parts[2] not in {"stream", "sessions"}:
        parts[2] = "{session_id}"
        return "/".join(parts)
    if path.startswith("/voice/sessions/") and len(parts) >= 4:
        parts[3] = "{session_id}"
        return "/".join(parts)
    if path.startswith("/voice/ws/"):
        return "/voice/ws/{session_id}"

    return path


def record_http_request(
    method: str,
    endpoint: str,
    status_code: int,
    duration_seconds: float,
) -> None:
    """
    Record HTTP request metrics (RED metrics).

    Args:
        method: HTTP method (GET, POST, etc.)
        endpoint: Request path (normalized here)
        status_code: HTTP status code
        duration_seconds: Request duration in seconds
    """
    normalized_endpoint = normalize_endpoint(endpoint)

    http_requests_total.labels(
        method=method,
        endpoint=normalized_endpoint,
        status=str(status_code),
    ).inc()

    if status_code >= 400:
        http_errors_total.labels(
            method=method,
            endpoint=normalized_endpoint,
            status_code=str(status_code),
        ).inc()

    http_request_duration_seconds.labels(
        method=method,
        endpoint=normalized_endpoint,
    ).observe(duration_seconds)


def record_llm_attempt(provider: str, mode: str, outcome: str, duration_seconds: float) -> None:
    """Record one provider attempt and its latency."""
    llm_requests_total.labels(provider=provider, mode=mode, outcome=outcome).inc()
    llm_request_duration_seconds.labels(provider=provider, mode=mode).observe(duration_seconds)


def record_llm_provider_error(provider: str, error_type: str) -> None:
    """Record a provider failure that advanced the fallback chain."""
    llm_provider_errors_total.labels(provider=provider, error_type=error_type).inc()


def record_llm_all_failed(mode: str) -> None:
    llm_all_providers_failed_total.labels(mode=mode).inc()


def record_structured_repair(schema: str) -> None:
    llm_structured_repairs_total.labels(schema=schema).inc()


def record_structured_failure(schema: str) -> None:
    llm_structured_failures_total.labels(schema=schema).inc()


def record_stream_event(event_type: str) -> None:
    stream_events_total.labels(event_type=event_type).inc()


def record_stream_cancelled() -> None:
    stream_cancellations_total.inc()


def record_voice_reconnect(outcome: str) -> None:
    voice_reconnect_attempts_total.labels(outcome=outcome).inc()


def record_voice_session_failed() -> None:
    voice_sessions_failed_total.inc()


def set_voice_sessions_active(count: int) -> None:
    voice_sessions_active.set(count)


def get_metrics() -> bytes:
    """Get Prometheus metrics in text format."""
    return generate_latest(registry)


def get_metrics_content_type() -> str:
    """Get content type for metrics endpoint."""
    return CONTENT_TYPE_LATEST
