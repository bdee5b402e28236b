from contextlib import asynccontextmanager
import logging
import uuid

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from billing_analytics import events
from billing_analytics.api.routes import router as api_router
from billing_analytics.bundles.service import bundle_refresh_service
from billing_analytics.core.config import get_settings
from billing_analytics.core.database import get_session_factory
from billing_analytics.errors import AnalyticsRefreshError
from billing_analytics.events import AnalyticsEvent
from billing_analytics.logging import configure_logging
from billing_analytics.middleware.observability import RequestObservabilityMiddleware
from billing_analytics.otel import configure_tracing


configure_logging()
logger = logging.getLogger("billing_analytics.lifecycle")

# Source-side changes that invalidate an account's bundle records
ACCOUNT_CHANGE_EVENTS = ("subscription.changed", "bundle.changed")


def _on_system_started(event: AnalyticsEvent) -> None:
    logger.info("system_event", extra={"event_name": event.name})


def _on_account_change_event(event: AnalyticsEvent) -> None:
    if not get_settings().analytics_auto_refresh_on_events:
        return

    account_id_raw = event.payload.get("account_id")
    if not isinstance(account_id_raw, str):
        return
    try:
        account_id = uuid.UUID(account_id_raw)
    except ValueError:
        logger.warning("bundles_auto_refresh_skipped", extra={"event_name": event.name, "error": "invalid account_id"})
        return

    correlation_id = event.payload.get("correlation_id")
    try:
        bundle_refresh_service.refresh_account_bundles(
            get_session_factory(),
            account_id,
            correlation_id=correlation_id if isinstance(correlation_id, str) else None,
        )
    except AnalyticsRefreshError as exc:
        logger.exception(
            "bundles_auto_refresh_failed",
            extra={"event_name": event.name, "account_id": account_id_raw, "error": str(exc)},
        )


def register_event_handlers() -> None:
    events.event_bus.subscribe("system.started", _on_system_started)
    for event_type in ACCOUNT_CHANGE_EVENTS:
        events.event_bus.subscribe(event_type, _on_account_change_event)


@asynccontextmanager
async def lifespan(app: FastAPI):
    register_event_handlers()
    events.publish({"event_type": "system.started", "service": get_settings().otel_service_name})
    yield


settings = get_settings()
configure_tracing(settings)

app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
app.add_middleware(RequestObservabilityMiddleware)
app.include_router(api_router)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor.instrument_app(app)
