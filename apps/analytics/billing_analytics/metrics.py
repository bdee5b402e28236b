from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

analytics_refresh_total = Counter(
    "analytics_refresh_total",
    "Total analytics refreshes by table and status",
    ["table", "status"],
)

analytics_refresh_duration_seconds = Histogram(
    "analytics_refresh_duration_seconds",
    "Analytics refresh duration in seconds",
    ["table"],
)

analytics_records_built_total = Counter(
    "analytics_records_built_total",
    "Total denormalized records built",
    ["table"],
)

analytics_build_failures_total = Counter(
    "analytics_build_failures_total",
    "Total failed record build tasks",
    ["table"],
)

analytics_sanity_mismatches_total = Counter(
    "analytics_sanity_mismatches_total",
    "Total reconciliation mismatches by check",
    ["check"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return path_format
        route_path = getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return route_path
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    status_str = str(status)
    http_requests_total.labels(method=method, path=path, status=status_str).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_refresh(table: str, status: str, duration: float) -> None:
    analytics_refresh_total.labels(table=table, status=status).inc()
    analytics_refresh_duration_seconds.labels(table=table).observe(duration)


def observe_records_built(table: str, count: int = 1) -> None:
    if count > 0:
        analytics_records_built_total.labels(table=table).inc(count)


def observe_build_failure(table: str) -> None:
    analytics_build_failures_total.labels(table=table).inc()


def observe_sanity_mismatches(check: str, count: int) -> None:
    if count > 0:
        analytics_sanity_mismatches_total.labels(check=check).inc(count)


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
