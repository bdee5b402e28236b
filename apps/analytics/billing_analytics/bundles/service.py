from __future__ import annotations

import logging
import time
import uuid
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, field

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from billing_analytics import events
from billing_analytics.bundles.factory import BUNDLES_TABLE, BusinessBundleFactory
from billing_analytics.bundles.repository import AnalyticsBundleRepository
from billing_analytics.bundles.schemas import BundleRecord, BundleRefreshRead, SubscriptionTransition
from billing_analytics.bundles.sql_context import SqlBundleContext
from billing_analytics.context import get_correlation_id, reset_correlation_id, set_correlation_id
from billing_analytics.core.config import get_settings
from billing_analytics.errors import AnalyticsRefreshError
from billing_analytics.metrics import observe_refresh


logger = logging.getLogger("billing_analytics.refresh")
tracer = trace.get_tracer("billing_analytics.refresh")


@dataclass(slots=True)
class BundleRefreshService:
    repository: AnalyticsBundleRepository = field(default_factory=AnalyticsBundleRepository)
    executor: Executor | None = None

    def refresh_account_bundles(
        self,
        session_factory: sessionmaker[Session],
        account_id: uuid.UUID,
        *,
        correlation_id: str | None = None,
    ) -> BundleRefreshRead:
        settings = get_settings()
        correlation_id = correlation_id or get_correlation_id()
        token = set_correlation_id(correlation_id)
        started = time.perf_counter()
        final_status = "Failed"

        with tracer.start_as_current_span("analytics.bundles.refresh") as refresh_span:
            refresh_span.set_attribute("account_id", str(account_id))
            refresh_span.set_attribute("table", BUNDLES_TABLE)
            if correlation_id:
                refresh_span.set_attribute("correlation_id", correlation_id)

            logger.info(
                "bundles.refresh.started",
                extra={"account_id": str(account_id), "table": BUNDLES_TABLE, "status": "Running", "duration_ms": 0.0},
            )
            try:
                ctx = SqlBundleContext(
                    session_factory,
                    account_id,
                    reference_currency=settings.analytics_reference_currency,
                )
                transitions = ctx.get_subscription_transitions()
                records = self._create_records(ctx, transitions, settings.analytics_refresh_workers)

                try:
                    with session_factory() as session, session.begin():
                        self.repository.replace_account_bundles(session, account_id, records)
                except SQLAlchemyError as exc:
                    raise AnalyticsRefreshError(
                        f"unable to store bundles of account {account_id}", cause=exc, account_id=account_id
                    ) from exc

                duration_ms = round((time.perf_counter() - started) * 1000, 2)
                logger.info(
                    "bundles.refresh.finished",
                    extra={
                        "account_id": str(account_id),
                        "table": BUNDLES_TABLE,
                        "status": "Succeeded",
                        "record_count": len(records),
                        "duration_ms": duration_ms,
                    },
                )
                events.publish(
                    {
                        "event_type": "analytics.bundles.refreshed",
                        "account_id": str(account_id),
                        "record_count": len(records),
                        "correlation_id": correlation_id,
                    }
                )
                final_status = "Succeeded"
            except AnalyticsRefreshError as exc:
                refresh_span.record_exception(exc)
                refresh_span.set_status(Status(StatusCode.ERROR, str(exc)))
                logger.info(
                    "bundles.refresh.finished",
                    extra={
                        "account_id": str(account_id),
                        "table": BUNDLES_TABLE,
                        "status": "Failed",
                        "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                        "error": str(exc),
                    },
                )
                raise
            finally:
                observe_refresh(table=BUNDLES_TABLE, status=final_status, duration=time.perf_counter() - started)
                reset_correlation_id(token)

        return BundleRefreshRead(
            account_id=account_id,
            record_count=len(records),
            duration_ms=duration_ms,
            records=sorted(records, key=lambda record: record.bundle_account_rank),
        )

    def _create_records(
        self,
        ctx: SqlBundleContext,
        transitions: list[SubscriptionTransition],
        max_workers: int,
    ) -> list[BundleRecord]:
        if self.executor is not None:
            return BusinessBundleFactory(self.executor).create_business_bundles(ctx, transitions)
        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="analytics-bundles") as executor:
            return BusinessBundleFactory(executor).create_business_bundles(ctx, transitions)


bundle_refresh_service = BundleRefreshService()
