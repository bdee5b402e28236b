from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy import ColumnElement, Select, and_, case, func, or_, select
from sqlalchemy.orm import Session, aliased

from billing_analytics.bundles.models import (
    AccountRow,
    AnalyticsBundleRow,
    AuditLogRow,
    BundleRow,
    SubscriptionRow,
    SubscriptionTransitionRow,
)
from billing_analytics.bundles.schemas import SanityCheckName, SanityCheckRead, SanityReportRead
from billing_analytics.bundles.sql_context import BUNDLES_AUDIT_TABLE
from billing_analytics.metrics import observe_sanity_mismatches


logger = logging.getLogger("billing_analytics.sanity")


def _differs(left: Any, right: Any) -> ColumnElement[bool]:
    """NULL-aware inequality: two NULLs match, NULL and a value do not."""
    return or_(
        and_(left.is_(None), right.is_not(None)),
        and_(left.is_not(None), right.is_(None)),
        left != right,
    )


@dataclass(slots=True)
class BundleSanityChecker:
    """Consistency checks between ``analytics_bundles`` and the transactional tables.

    Every check returns the offending rows; an empty list means the check passed.
    """

    def run(self, session: Session, account_id: uuid.UUID | None = None) -> SanityReportRead:
        checks: list[tuple[SanityCheckName, Select[Any]]] = [
            ("bundles_missing", self._bundles_missing(account_id)),
            ("bundles_orphaned", self._bundles_orphaned(account_id)),
            ("bundle_fields", self._bundle_fields(account_id)),
            ("account_fields", self._account_fields(account_id)),
            ("creation_audit", self._creation_audit(account_id)),
            ("charged_through_date", self._charged_through_date(account_id)),
            ("rank_density", self._rank_density(account_id)),
            ("latest_for_external_key", self._latest_for_external_key(account_id)),
        ]

        results: list[SanityCheckRead] = []
        for name, stmt in checks:
            rows = [dict(row._mapping) for row in session.execute(stmt).all()]
            if rows:
                observe_sanity_mismatches(name, len(rows))
                logger.warning(
                    "sanity.check.failed",
                    extra={"check": name, "mismatch_count": len(rows), "account_id": str(account_id) if account_id else None},
                )
            results.append(SanityCheckRead(check=name, mismatch_count=len(rows), rows=rows))

        return SanityReportRead(
            account_id=account_id,
            passed=all(item.mismatch_count == 0 for item in results),
            checks=results,
        )

    def _bundles_missing(self, account_id: uuid.UUID | None) -> Select[Any]:
        has_base_transition = (
            select(SubscriptionTransitionRow.record_id)
            .where(
                SubscriptionTransitionRow.bundle_id == BundleRow.id,
                SubscriptionTransitionRow.subscription_id.in_(select(SubscriptionRow.base_entitlement_id)),
            )
            .exists()
        )
        has_analytics_row = select(AnalyticsBundleRow.record_id).where(AnalyticsBundleRow.bundle_id == BundleRow.id).exists()
        stmt = select(BundleRow.id.label("bundle_id"), BundleRow.account_id, BundleRow.external_key).where(
            has_base_transition, ~has_analytics_row
        )
        if account_id is not None:
            stmt = stmt.where(BundleRow.account_id == account_id)
        return stmt.order_by(BundleRow.record_id.asc())

    def _bundles_orphaned(self, account_id: uuid.UUID | None) -> Select[Any]:
        has_bundle = select(BundleRow.record_id).where(BundleRow.id == AnalyticsBundleRow.bundle_id).exists()
        stmt = select(AnalyticsBundleRow.bundle_id, AnalyticsBundleRow.account_id).where(~has_bundle)
        return self._scoped(stmt, account_id)

    def _bundle_fields(self, account_id: uuid.UUID | None) -> Select[Any]:
        stmt = (
            select(
                AnalyticsBundleRow.bundle_id,
                AnalyticsBundleRow.bundle_external_key,
                BundleRow.external_key.label("expected_bundle_external_key"),
                AnalyticsBundleRow.bundle_record_id,
                BundleRow.record_id.label("expected_bundle_record_id"),
            )
            .join(BundleRow, BundleRow.id == AnalyticsBundleRow.bundle_id)
            .where(
                or_(
                    AnalyticsBundleRow.bundle_external_key != BundleRow.external_key,
                    AnalyticsBundleRow.bundle_record_id != BundleRow.record_id,
                    AnalyticsBundleRow.account_id != BundleRow.account_id,
                    AnalyticsBundleRow.created_date != BundleRow.created_date,
                )
            )
        )
        return self._scoped(stmt, account_id)

    def _account_fields(self, account_id: uuid.UUID | None) -> Select[Any]:
        stmt = (
            select(
                AnalyticsBundleRow.bundle_id,
                AnalyticsBundleRow.account_id,
                AnalyticsBundleRow.account_record_id,
                AccountRow.record_id.label("expected_account_record_id"),
                AnalyticsBundleRow.account_external_key,
                AccountRow.external_key.label("expected_account_external_key"),
            )
            .join(AccountRow, AccountRow.id == AnalyticsBundleRow.account_id)
            .where(
                or_(
                    AnalyticsBundleRow.account_record_id != AccountRow.record_id,
                    AnalyticsBundleRow.account_external_key != AccountRow.external_key,
                    _differs(AnalyticsBundleRow.account_name, AccountRow.name),
                    AnalyticsBundleRow.tenant_record_id != AccountRow.tenant_record_id,
                )
            )
        )
        return self._scoped(stmt, account_id)

    def _creation_audit(self, account_id: uuid.UUID | None) -> Select[Any]:
        stmt = (
            select(
                AnalyticsBundleRow.bundle_id,
                AnalyticsBundleRow.created_by,
                AuditLogRow.created_by.label("expected_created_by"),
                AnalyticsBundleRow.created_reason_code,
                AuditLogRow.reason_code.label("expected_reason_code"),
                AnalyticsBundleRow.created_comments,
                AuditLogRow.comments.label("expected_comments"),
            )
            .join(BundleRow, BundleRow.id == AnalyticsBundleRow.bundle_id)
            .join(
                AuditLogRow,
                and_(
                    AuditLogRow.target_record_id == BundleRow.record_id,
                    AuditLogRow.table_name == BUNDLES_AUDIT_TABLE,
                    AuditLogRow.change_type == "INSERT",
                ),
            )
            .where(
                or_(
                    _differs(AnalyticsBundleRow.created_by, AuditLogRow.created_by),
                    _differs(AnalyticsBundleRow.created_reason_code, AuditLogRow.reason_code),
                    _differs(AnalyticsBundleRow.created_comments, AuditLogRow.comments),
                )
            )
        )
        return self._scoped(stmt, account_id)

    def _charged_through_date(self, account_id: uuid.UUID | None) -> Select[Any]:
        # Same pick as the builder: the first BASE subscription of the bundle in record order
        candidate = aliased(SubscriptionRow)
        first_base_record_id = (
            select(func.min(candidate.record_id))
            .where(
                candidate.bundle_id == AnalyticsBundleRow.bundle_id,
                candidate.last_active_product_category == "BASE",
            )
            .correlate(AnalyticsBundleRow)
            .scalar_subquery()
        )
        stmt = (
            select(
                AnalyticsBundleRow.bundle_id,
                AnalyticsBundleRow.charged_through_date,
                SubscriptionRow.charged_through_date.label("expected_charged_through_date"),
            )
            .outerjoin(SubscriptionRow, SubscriptionRow.record_id == first_base_record_id)
            .where(_differs(AnalyticsBundleRow.charged_through_date, SubscriptionRow.charged_through_date))
        )
        return self._scoped(stmt, account_id)

    def _rank_density(self, account_id: uuid.UUID | None) -> Select[Any]:
        bundle_count = func.count(AnalyticsBundleRow.record_id)
        stmt = (
            select(
                AnalyticsBundleRow.account_id,
                bundle_count.label("bundle_count"),
                func.min(AnalyticsBundleRow.bundle_account_rank).label("min_rank"),
                func.max(AnalyticsBundleRow.bundle_account_rank).label("max_rank"),
            )
            .group_by(AnalyticsBundleRow.account_id)
            .having(
                or_(
                    func.min(AnalyticsBundleRow.bundle_account_rank) != 1,
                    func.max(AnalyticsBundleRow.bundle_account_rank) != bundle_count,
                    func.count(AnalyticsBundleRow.bundle_account_rank.distinct()) != bundle_count,
                )
            )
        )
        if account_id is not None:
            stmt = stmt.where(AnalyticsBundleRow.account_id == account_id)
        return stmt

    def _latest_for_external_key(self, account_id: uuid.UUID | None) -> Select[Any]:
        latest_count = func.sum(case((AnalyticsBundleRow.latest_for_bundle_external_key.is_(True), 1), else_=0))
        stmt = (
            select(
                AnalyticsBundleRow.bundle_external_key,
                AnalyticsBundleRow.tenant_record_id,
                latest_count.label("latest_count"),
            )
            .group_by(AnalyticsBundleRow.bundle_external_key, AnalyticsBundleRow.tenant_record_id)
            .having(latest_count != 1)
        )
        if account_id is not None:
            # The newest bundle of a key can live on another account of the tenant: count tenant-wide
            scoped = aliased(AnalyticsBundleRow)
            account_keys = select(scoped.bundle_external_key).where(scoped.account_id == account_id)
            account_tenants = select(scoped.tenant_record_id).where(scoped.account_id == account_id)
            stmt = stmt.where(
                AnalyticsBundleRow.bundle_external_key.in_(account_keys),
                AnalyticsBundleRow.tenant_record_id.in_(account_tenants),
            )
        return stmt

    @staticmethod
    def _scoped(stmt: Select[Any], account_id: uuid.UUID | None) -> Select[Any]:
        if account_id is not None:
            stmt = stmt.where(AnalyticsBundleRow.account_id == account_id)
        return stmt.order_by(AnalyticsBundleRow.bundle_account_rank.asc())


bundle_sanity_checker = BundleSanityChecker()
