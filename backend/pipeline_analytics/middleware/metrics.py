"""
Prometheus metrics middleware.

Collects HTTP request metrics (counter + histogram) and exposes application-level
counters for aggregation passes, advisor calls, lifecycle transitions, polling
and impact recomputation.
"""

import time

from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

# ── HTTP metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

# ── Analytics metrics ────────────────────────────────────────────────────────

aggregation_passes_total = Counter(
    "aggregation_passes_total",
    "Total dashboard aggregation passes",
    ["outcome"],  # fresh, stale
)

aggregation_duration_seconds = Histogram(
    "aggregation_duration_seconds",
    "Aggregation + bottleneck detection time in seconds",
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0),
)

advisor_requests_total = Counter(
    "advisor_requests_total",
    "Advisor calls by outcome",
    ["outcome"],  # ok, timeout, unavailable
)

advisor_candidates_rejected_total = Counter(
    "advisor_candidates_rejected_total",
    "Advisor suggestions dropped at the trust boundary",
    ["reason"],
)

# ── Lifecycle metrics ────────────────────────────────────────────────────────

lifecycle_transitions_total = Counter(
    "lifecycle_transitions_total",
    "Optimization lifecycle transitions",
    ["transition"],  # proposed, applied, rejected, invalid
)

# ── Polling / impact metrics ─────────────────────────────────────────────────

reconciler_responses_total = Counter(
    "reconciler_responses_total",
    "Polling reconciler fetch outcomes",
    ["outcome"],  # applied, discarded, failed
)

impact_jobs_total = Counter(
    "impact_jobs_total",
    "Impact recompute jobs by outcome",
    ["outcome"],  # computed, superseded, invalidated, failed
)


def _normalize_path(path: str) -> str:
    """Collapse path parameters to reduce cardinality.

    e.g. /api/optimizations/OPT-ABC123/apply → /api/optimizations/{id}/apply
    """
    parts = path.strip("/").split("/")
    normalized = []
    for i, part in enumerate(parts):
        if i > 1 and (
            part.startswith("OPT-")
            or part.startswith("RUN-")
            or part.isdigit()
            or len(part) > 20
        ):
            normalized.append("{id}")
        elif i == 2 and parts[1] == "pipelines":
            normalized.append("{pipeline_id}")
        else:
            normalized.append(part)
    return "/" + "/".join(normalized)


class PrometheusMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        # Skip metrics endpoint itself to avoid recursion
        if request.url.path == "/metrics":
            return await call_next(request)

        method = request.method
        path = _normalize_path(request.url.path)

        start = time.time()
        response = await call_next(request)
        duration = time.time() - start

        http_requests_total.labels(
            method=method,
            path=path,
            status_code=response.status_code,
        ).inc()

        http_request_duration_seconds.labels(
            method=method,
            path=path,
        ).observe(duration)

        return response
