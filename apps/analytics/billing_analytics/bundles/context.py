from __future__ import annotations

import uuid
from collections.abc import Iterable
from typing import Protocol

from billing_analytics.bundles.schemas import Account, AuditLog, ReportGroup, SubscriptionBundle
from billing_analytics.currency import CurrencyConverter


class BundleContext(Protocol):
    """Per-account lookups needed to denormalize subscription bundles.

    Implementations must allow concurrent calls to ``get_bundle_record_id`` and
    ``get_latest_subscription_bundle_for_external_key``.
    ``get_bundle_creation_audit_log`` may keep unsynchronized state and is only
    ever called from the thread driving the refresh.
    Lookup failures should raise ``AnalyticsRefreshError``.
    """

    def get_account(self) -> Account: ...

    def get_account_record_id(self) -> int: ...

    def get_tenant_record_id(self) -> int: ...

    def get_report_group(self) -> ReportGroup: ...

    def get_currency_converter(self) -> CurrencyConverter: ...

    def get_account_bundles(self) -> Iterable[SubscriptionBundle]: ...

    def get_bundle_record_id(self, bundle_id: uuid.UUID) -> int: ...

    def get_latest_subscription_bundle_for_external_key(self, external_key: str) -> SubscriptionBundle: ...

    def get_bundle_creation_audit_log(self, bundle_id: uuid.UUID) -> AuditLog | None: ...
