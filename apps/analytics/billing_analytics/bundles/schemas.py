from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


ProductCategory = Literal["BASE", "ADD_ON", "STANDALONE"]
ReportGroup = Literal["default", "test", "partner"]
SanityCheckName = Literal[
    "bundles_missing",
    "bundles_orphaned",
    "bundle_fields",
    "account_fields",
    "creation_audit",
    "charged_through_date",
    "rank_density",
    "latest_for_external_key",
]


class _Snapshot(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)


class Account(_Snapshot):
    id: UUID
    external_key: str
    name: str | None = None
    currency: str | None = None


class Subscription(_Snapshot):
    id: UUID
    bundle_id: UUID
    base_entitlement_id: UUID
    last_active_product_category: ProductCategory | None = None
    charged_through_date: date | None = None


class SubscriptionBundle(_Snapshot):
    id: UUID
    external_key: str
    account_id: UUID
    created_date: datetime
    subscriptions: tuple[Subscription, ...] = ()


class AuditLog(_Snapshot):
    created_by: str | None = None
    reason_code: str | None = None
    comments: str | None = None
    created_date: datetime | None = None


class SubscriptionTransition(_Snapshot):
    record_id: int
    bundle_id: UUID
    bundle_external_key: str
    subscription_id: UUID
    event: str
    next_product_name: str | None = None
    next_product_type: str | None = None
    next_product_category: ProductCategory | None = None
    next_slug: str | None = None
    next_phase: str | None = None
    next_billing_period: str | None = None
    next_price_list: str | None = None
    next_price: Decimal | None = None
    next_mrr: Decimal | None = None
    next_currency: str | None = None
    next_service: str | None = None
    next_state: str | None = None
    next_start_date: date | None = None
    next_end_date: date | None = None


class BundleRecord(_Snapshot):
    account_id: UUID
    account_record_id: int
    account_external_key: str
    account_name: str | None
    bundle_id: UUID
    bundle_record_id: int
    bundle_external_key: str
    subscription_id: UUID
    bundle_account_rank: int = Field(ge=1)
    latest_for_bundle_external_key: bool
    charged_through_date: date | None
    current_product_name: str | None
    current_product_type: str | None
    current_product_category: ProductCategory | None
    current_slug: str | None
    current_phase: str | None
    current_billing_period: str | None
    current_price_list: str | None
    current_price: Decimal | None
    converted_current_price: Decimal | None
    current_mrr: Decimal | None
    converted_current_mrr: Decimal | None
    current_currency: str | None
    current_service: str | None
    current_state: str | None
    current_start_date: date | None
    current_end_date: date | None
    converted_currency: str
    created_date: datetime
    created_by: str | None
    created_reason_code: str | None
    created_comments: str | None
    tenant_record_id: int
    report_group: ReportGroup


class BundleRefreshRead(BaseModel):
    account_id: UUID
    record_count: int
    duration_ms: float
    records: list[BundleRecord] = Field(default_factory=list)


class SanityCheckRead(BaseModel):
    check: SanityCheckName
    mismatch_count: int
    rows: list[dict[str, object]] = Field(default_factory=list)


class SanityReportRead(BaseModel):
    account_id: UUID | None
    passed: bool
    checks: list[SanityCheckRead] = Field(default_factory=list)
