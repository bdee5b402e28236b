from __future__ import annotations

import uuid
from collections.abc import Iterator
from contextlib import contextmanager

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from billing_analytics.bundles.models import (
    AccountRow,
    AuditLogRow,
    BundleRow,
    CurrencyConversionRow,
    SubscriptionTransitionRow,
)
from billing_analytics.bundles.schemas import (
    Account,
    AuditLog,
    ReportGroup,
    Subscription,
    SubscriptionBundle,
    SubscriptionTransition,
)
from billing_analytics.currency import CurrencyConversionRate, CurrencyConverter
from billing_analytics.errors import AccountNotFoundError, AnalyticsRefreshError


BUNDLES_AUDIT_TABLE = "BUNDLES"


def bundle_snapshot(row: BundleRow) -> SubscriptionBundle:
    return SubscriptionBundle(
        id=row.id,
        external_key=row.external_key,
        account_id=row.account_id,
        created_date=row.created_date,
        subscriptions=tuple(Subscription.model_validate(item) for item in row.subscriptions),
    )


class SqlBundleContext:
    """``BundleContext`` backed by the transactional tables.

    Every lookup opens its own short-lived session, so lookups can run from
    several worker threads at once. The creation audit logs are the exception:
    they are loaded once per account into an unsynchronized cache and must be
    read from the refreshing thread only.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        account_id: uuid.UUID,
        *,
        reference_currency: str = "USD",
    ) -> None:
        self.session_factory = session_factory
        self.account_id = account_id
        self.reference_currency = reference_currency
        self._account_row: AccountRow | None = None
        self._account_tags: frozenset[str] = frozenset()
        self._creation_audit_logs: dict[int, AuditLog] | None = None

    @contextmanager
    def _session(self, what: str) -> Iterator[Session]:
        try:
            with self.session_factory() as session:
                yield session
        except (SQLAlchemyError, ValidationError) as exc:
            raise AnalyticsRefreshError(f"unable to load {what}", cause=exc, account_id=self.account_id) from exc

    def _load_account(self) -> AccountRow:
        if self._account_row is None:
            with self._session("account") as session:
                row = session.scalar(
                    select(AccountRow).options(selectinload(AccountRow.tags)).where(AccountRow.id == self.account_id)
                )
                if row is None:
                    raise AccountNotFoundError(self.account_id)
                self._account_tags = frozenset(tag.name.upper() for tag in row.tags)
                session.expunge(row)
            self._account_row = row
        return self._account_row

    def get_account(self) -> Account:
        row = self._load_account()
        try:
            return Account.model_validate(row)
        except ValidationError as exc:
            raise AnalyticsRefreshError("unable to load account", cause=exc, account_id=self.account_id) from exc

    def get_account_record_id(self) -> int:
        return self._load_account().record_id

    def get_tenant_record_id(self) -> int:
        return self._load_account().tenant_record_id

    def get_report_group(self) -> ReportGroup:
        self._load_account()
        if "TEST" in self._account_tags:
            return "test"
        if "PARTNER" in self._account_tags:
            return "partner"
        return "default"

    def get_currency_converter(self) -> CurrencyConverter:
        with self._session("currency conversion rates") as session:
            rows = session.scalars(
                select(CurrencyConversionRow).where(CurrencyConversionRow.reference_currency == self.reference_currency)
            ).all()
            rates = [
                CurrencyConversionRate(
                    currency=row.currency,
                    start_date=row.start_date,
                    end_date=row.end_date,
                    reference_rate=row.reference_rate,
                )
                for row in rows
            ]
        return CurrencyConverter(self.reference_currency, rates)

    def get_account_bundles(self) -> list[SubscriptionBundle]:
        with self._session("account bundles") as session:
            rows = session.scalars(
                select(BundleRow)
                .options(selectinload(BundleRow.subscriptions))
                .where(BundleRow.account_id == self.account_id)
                .order_by(BundleRow.record_id.asc())
            ).all()
            return [bundle_snapshot(row) for row in rows]

    def get_bundle_record_id(self, bundle_id: uuid.UUID) -> int:
        with self._session("bundle record id") as session:
            record_id = session.scalar(select(BundleRow.record_id).where(BundleRow.id == bundle_id))
        if record_id is None:
            raise AnalyticsRefreshError(f"bundle {bundle_id} not found", account_id=self.account_id, bundle_id=bundle_id)
        return record_id

    def get_latest_subscription_bundle_for_external_key(self, external_key: str) -> SubscriptionBundle:
        tenant_record_id = self.get_tenant_record_id()
        with self._session("latest bundle for external key") as session:
            row = session.scalar(
                select(BundleRow)
                .options(selectinload(BundleRow.subscriptions))
                .where(BundleRow.external_key == external_key, BundleRow.tenant_record_id == tenant_record_id)
                .order_by(BundleRow.created_date.desc(), BundleRow.record_id.desc())
                .limit(1)
            )
            if row is None:
                raise AnalyticsRefreshError(f"no bundle for external key {external_key}", account_id=self.account_id)
            return bundle_snapshot(row)

    def get_bundle_creation_audit_log(self, bundle_id: uuid.UUID) -> AuditLog | None:
        if self._creation_audit_logs is None:
            self._creation_audit_logs = self._load_creation_audit_logs()
        bundle_record_id = self.get_bundle_record_id(bundle_id)
        return self._creation_audit_logs.get(bundle_record_id)

    def _load_creation_audit_logs(self) -> dict[int, AuditLog]:
        account_record_id = self.get_account_record_id()
        with self._session("bundle audit logs") as session:
            rows = session.scalars(
                select(AuditLogRow)
                .where(
                    AuditLogRow.account_record_id == account_record_id,
                    AuditLogRow.table_name == BUNDLES_AUDIT_TABLE,
                    AuditLogRow.change_type == "INSERT",
                )
                .order_by(AuditLogRow.record_id.asc())
            ).all()
            logs: dict[int, AuditLog] = {}
            for row in rows:
                logs.setdefault(row.target_record_id, AuditLog.model_validate(row))
            return logs

    def get_subscription_transitions(self) -> list[SubscriptionTransition]:
        with self._session("subscription transitions") as session:
            rows = session.scalars(
                select(SubscriptionTransitionRow)
                .where(SubscriptionTransitionRow.account_id == self.account_id)
                .order_by(
                    SubscriptionTransitionRow.next_start_date.asc().nulls_first(),
                    SubscriptionTransitionRow.record_id.asc(),
                )
            ).all()
            return [SubscriptionTransition.model_validate(row) for row in rows]
