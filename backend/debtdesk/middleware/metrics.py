"""
Prometheus metrics middleware.

Collects HTTP request metrics (counter + histogram) and exposes application-level
counters for the delegation lifecycle and notification delivery.
"""

import time

from prometheus_client import Counter, Gauge, Histogram
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

# ── Delegation metrics ───────────────────────────────────────────────────────

delegations_total = Counter(
    "delegations_total",
    "Delegation lifecycle transitions",
    ["transition"],  # created | revoked | expired
)

delegation_sweep_duration_seconds = Histogram(
    "delegation_sweep_duration_seconds",
    "Duration of one expiry sweep pass",
    ["trigger"],  # periodic | on_demand | on_create
    buckets=(0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0),
)

# ── Notification metrics ─────────────────────────────────────────────────────

notifications_total = Counter(
    "notifications_total",
    "Delegation notifications by outcome",
    ["type", "outcome"],  # outcome: sent | dropped
)

push_connections_open = Gauge(
    "push_connections_open",
    "Open notification WebSocket connections",
)


def _normalize_path(path: str) -> str:
    """Collapse path parameters to reduce cardinality.

    e.g. /api/delegations/3f2a…/revoke → /api/delegations/{id}/revoke
    """
    parts = path.strip("/").split("/")
    normalized = []
    for i, part in enumerate(parts):
        if i > 1 and (part.isdigit() or len(part) > 20):
            normalized.append("{id}")
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
