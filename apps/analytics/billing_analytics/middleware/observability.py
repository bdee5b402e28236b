from __future__ import annotations

import logging
import time
import uuid

from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from billing_analytics.context import reset_correlation_id, set_correlation_id
from billing_analytics.metrics import observe_http_request, resolve_http_path_label


logger = logging.getLogger("billing_analytics.request")

CORRELATION_HEADER = "x-correlation-id"
_MAX_CORRELATION_ID_LENGTH = 128


def _incoming_correlation_id(request: Request) -> str | None:
    value = request.headers.get(CORRELATION_HEADER, "").strip()
    if not value or len(value) > _MAX_CORRELATION_ID_LENGTH:
        return None
    return value


def _record_request(request: Request, status_code: int, started: float, *, failed: bool = False) -> None:
    path = resolve_http_path_label(request)
    duration_ms = round((time.perf_counter() - started) * 1000, 2)
    observe_http_request(method=request.method, path=path, status=status_code, duration=duration_ms / 1000)
    fields = {"method": request.method, "path": path, "status_code": status_code, "duration_ms": duration_ms}
    if failed:
        logger.error("http.error", exc_info=True, extra=fields)
    else:
        logger.info("http.request", extra=fields)


class RequestObservabilityMiddleware(BaseHTTPMiddleware):
    """Tags every request with a correlation id, then times, counts and logs it.

    The correlation id comes from ``X-Correlation-Id`` when the caller sends a
    usable one and is echoed back on the response.
    """

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        correlation_id = _incoming_correlation_id(request) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id
        span = trace.get_current_span()
        if span.is_recording():
            span.set_attribute("correlation_id", correlation_id)

        token = set_correlation_id(correlation_id)
        started = time.perf_counter()
        try:
            try:
                response = await call_next(request)
            except Exception:
                _record_request(request, 500, started, failed=True)
                raise
            _record_request(request, response.status_code, started)
        finally:
            reset_correlation_id(token)

        response.headers[CORRELATION_HEADER] = correlation_id
        return response
