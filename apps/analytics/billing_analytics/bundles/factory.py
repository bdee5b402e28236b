from __future__ import annotations

import contextvars
import logging
import uuid
from collections.abc import Iterable, Mapping
from concurrent.futures import CancelledError, Executor, Future, as_completed, wait
from dataclasses import dataclass

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from billing_analytics.bundles.context import BundleContext
from billing_analytics.bundles.ranking import filter_transitions_for_base_plans
from billing_analytics.bundles.schemas import (
    Account,
    AuditLog,
    BundleRecord,
    ReportGroup,
    SubscriptionBundle,
    SubscriptionTransition,
)
from billing_analytics.currency import CurrencyConverter
from billing_analytics.errors import AnalyticsRefreshError
from billing_analytics.metrics import observe_build_failure, observe_records_built


logger = logging.getLogger("billing_analytics.bundles")
tracer = trace.get_tracer("billing_analytics.bundles")

BUNDLES_TABLE = "analytics_bundles"


@dataclass(frozen=True, slots=True)
class BundleWorkItem:
    """Everything one build task needs that must be read on the calling thread."""

    transition: SubscriptionTransition
    rank: int
    creation_audit_log: AuditLog | None


class BundleRecordBuilder:
    def build(
        self,
        ctx: BundleContext,
        account: Account,
        creation_audit_log: AuditLog | None,
        account_record_id: int,
        bundles: Mapping[uuid.UUID, SubscriptionBundle],
        transition: SubscriptionTransition,
        rank: int,
        currency_converter: CurrencyConverter,
        tenant_record_id: int,
        report_group: ReportGroup,
    ) -> BundleRecord:
        # The factory only ranks bundles it found in the directory
        bundle = bundles[transition.bundle_id]

        try:
            bundle_record_id = ctx.get_bundle_record_id(bundle.id)
            latest_bundle = ctx.get_latest_subscription_bundle_for_external_key(bundle.external_key)
        except AnalyticsRefreshError:
            raise
        except Exception as exc:
            raise AnalyticsRefreshError(
                f"lookup failed for bundle {bundle.id}",
                cause=exc,
                account_id=account.id,
                bundle_id=bundle.id,
            ) from exc

        charged_through_date = None
        for subscription in bundle.subscriptions:
            if subscription.last_active_product_category == "BASE":
                charged_through_date = subscription.charged_through_date
                break

        conversion_date = transition.next_start_date
        return BundleRecord(
            account_id=account.id,
            account_record_id=account_record_id,
            account_external_key=account.external_key,
            account_name=account.name,
            bundle_id=bundle.id,
            bundle_record_id=bundle_record_id,
            bundle_external_key=bundle.external_key,
            subscription_id=transition.subscription_id,
            bundle_account_rank=rank,
            latest_for_bundle_external_key=latest_bundle.id == bundle.id,
            charged_through_date=charged_through_date,
            current_product_name=transition.next_product_name,
            current_product_type=transition.next_product_type,
            current_product_category=transition.next_product_category,
            current_slug=transition.next_slug,
            current_phase=transition.next_phase,
            current_billing_period=transition.next_billing_period,
            current_price_list=transition.next_price_list,
            current_price=transition.next_price,
            converted_current_price=currency_converter.get_converted_value(
                transition.next_price, transition.next_currency, conversion_date
            ),
            current_mrr=transition.next_mrr,
            converted_current_mrr=currency_converter.get_converted_value(
                transition.next_mrr, transition.next_currency, conversion_date
            ),
            current_currency=transition.next_currency,
            current_service=transition.next_service,
            current_state=transition.next_state,
            current_start_date=transition.next_start_date,
            current_end_date=transition.next_end_date,
            converted_currency=currency_converter.reference_currency,
            created_date=bundle.created_date,
            created_by=creation_audit_log.created_by if creation_audit_log is not None else None,
            created_reason_code=creation_audit_log.reason_code if creation_audit_log is not None else None,
            created_comments=creation_audit_log.comments if creation_audit_log is not None else None,
            tenant_record_id=tenant_record_id,
            report_group=report_group,
        )


class BusinessBundleFactory:
    """Rebuilds the denormalized bundle records of one account.

    Builds run on the supplied executor, which the factory neither creates nor
    shuts down. The call blocks until every submitted build has finished; if
    any of them failed, the first failure is raised and no records are
    returned.
    """

    def __init__(
        self,
        executor: Executor,
        builder: BundleRecordBuilder | None = None,
        timeout: float | None = None,
    ) -> None:
        self.executor = executor
        self.builder = builder or BundleRecordBuilder()
        self.timeout = timeout

    def create_business_bundles(
        self,
        ctx: BundleContext,
        sorted_transitions: Iterable[SubscriptionTransition],
    ) -> list[BundleRecord]:
        with tracer.start_as_current_span("analytics.bundles.aggregate") as span:
            try:
                # Read these once, the context may not tolerate repeated concurrent reads
                account = ctx.get_account()
                account_record_id = ctx.get_account_record_id()
                tenant_record_id = ctx.get_tenant_record_id()
                report_group = ctx.get_report_group()
                currency_converter = ctx.get_currency_converter()

                base_subscription_ids: set[uuid.UUID] = set()
                bundles: dict[uuid.UUID, SubscriptionBundle] = {}
                for bundle in ctx.get_account_bundles():
                    bundles[bundle.id] = bundle
                    for subscription in bundle.subscriptions:
                        base_subscription_ids.add(subscription.base_entitlement_id)

                ranked = filter_transitions_for_base_plans(sorted_transitions, base_subscription_ids)

                work_items: list[BundleWorkItem] = []
                for bundle_id, transition in ranked.transition_for_bundle.items():
                    # The account audit log cache is not thread safe: fetch on this thread only
                    creation_audit_log = ctx.get_bundle_creation_audit_log(bundle_id)
                    work_items.append(
                        BundleWorkItem(
                            transition=transition,
                            rank=ranked.rank_for_bundle[bundle_id],
                            creation_audit_log=creation_audit_log,
                        )
                    )
            except AnalyticsRefreshError as exc:
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, str(exc)))
                raise
            except Exception as exc:
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, str(exc)))
                raise AnalyticsRefreshError("unable to prefetch bundle context", cause=exc) from exc

            span.set_attribute("account_id", str(account.id))
            span.set_attribute("bundle_count", len(work_items))

            def build(item: BundleWorkItem) -> BundleRecord:
                with tracer.start_as_current_span("analytics.bundle.build") as build_span:
                    build_span.set_attribute("account_id", str(account.id))
                    build_span.set_attribute("bundle_id", str(item.transition.bundle_id))
                    build_span.set_attribute("bundle_account_rank", item.rank)
                    return self.builder.build(
                        ctx,
                        account,
                        item.creation_audit_log,
                        account_record_id,
                        bundles,
                        item.transition,
                        item.rank,
                        currency_converter,
                        tenant_record_id,
                        report_group,
                    )

            futures: dict[Future[BundleRecord], uuid.UUID] = {}
            first_error: AnalyticsRefreshError | None = None
            for item in work_items:
                # A fresh copy per task: one context cannot be entered by two threads
                task_context = contextvars.copy_context()
                try:
                    future = self.executor.submit(task_context.run, build, item)
                except RuntimeError as exc:
                    first_error = AnalyticsRefreshError(
                        "unable to schedule bundle build",
                        cause=exc,
                        account_id=account.id,
                        bundle_id=item.transition.bundle_id,
                    )
                    break
                futures[future] = item.transition.bundle_id

            records, drain_error = self._drain(futures, account.id)
            first_error = first_error or drain_error
            if first_error is not None:
                span.record_exception(first_error)
                span.set_status(Status(StatusCode.ERROR, str(first_error)))
                raise first_error from first_error.cause

            observe_records_built(BUNDLES_TABLE, len(records))
            return records

    def _drain(
        self,
        futures: Mapping[Future[BundleRecord], uuid.UUID],
        account_id: uuid.UUID,
    ) -> tuple[list[BundleRecord], AnalyticsRefreshError | None]:
        records: list[BundleRecord] = []
        first_error: AnalyticsRefreshError | None = None

        try:
            for future in as_completed(futures, timeout=self.timeout):
                error = self._collect(future, futures[future], account_id, records)
                if error is None:
                    continue
                observe_build_failure(BUNDLES_TABLE)
                if first_error is None:
                    first_error = error
                    logger.error(
                        "bundles.build.failed",
                        extra={"account_id": str(account_id), "bundle_id": str(error.bundle_id), "error": str(error.cause)},
                    )
                else:
                    logger.warning(
                        "bundles.build.suppressed_error",
                        extra={"account_id": str(account_id), "bundle_id": str(error.bundle_id), "error": str(error.cause)},
                    )
        except TimeoutError as exc:
            # Drop builds that never started, wait out the running ones
            for future in futures:
                future.cancel()
            wait(futures)
            return [], AnalyticsRefreshError(
                "timed out waiting for bundle builds", cause=exc, account_id=account_id
            )

        if first_error is not None:
            return [], first_error
        return records, None

    @staticmethod
    def _collect(
        future: Future[BundleRecord],
        bundle_id: uuid.UUID,
        account_id: uuid.UUID,
        records: list[BundleRecord],
    ) -> AnalyticsRefreshError | None:
        try:
            records.append(future.result())
        except CancelledError as exc:
            return AnalyticsRefreshError(
                f"build of bundle {bundle_id} was cancelled", cause=exc, account_id=account_id, bundle_id=bundle_id
            )
        except AnalyticsRefreshError as exc:
            # Already carries the lookup failure as its cause
            if exc.bundle_id is None:
                exc.bundle_id = bundle_id
            if exc.account_id is None:
                exc.account_id = account_id
            return exc
        except Exception as exc:
            return AnalyticsRefreshError(
                f"build of bundle {bundle_id} failed", cause=exc, account_id=account_id, bundle_id=bundle_id
            )
        return None
