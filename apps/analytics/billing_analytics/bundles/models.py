from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing_analytics.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Transactional schema (read only from the analytics side)


class AccountRow(Base):
    __tablename__ = "accounts"

    record_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, unique=True, default=uuid.uuid4)
    external_key: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    currency: Mapped[str | None] = mapped_column(String(16), nullable=True)
    tenant_record_id: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    created_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    tags: Mapped[list[AccountTagRow]] = relationship(
        "billing_analytics.bundles.models.AccountTagRow",
        back_populates="account",
        cascade="all, delete-orphan",
    )


class AccountTagRow(Base):
    __tablename__ = "account_tags"

    record_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(64), nullable=False)

    account: Mapped[AccountRow] = relationship("billing_analytics.bundles.models.AccountRow", back_populates="tags")

    __table_args__ = (UniqueConstraint("account_id", "name", name="uq_account_tags_name"),)


class BundleRow(Base):
    __tablename__ = "bundles"

    record_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, unique=True, default=uuid.uuid4)
    external_key: Mapped[str] = mapped_column(String(255), nullable=False)
    account_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("accounts.id"), nullable=False)
    tenant_record_id: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    created_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    subscriptions: Mapped[list[SubscriptionRow]] = relationship(
        "billing_analytics.bundles.models.SubscriptionRow",
        back_populates="bundle",
        order_by="SubscriptionRow.record_id",
    )

    __table_args__ = (Index("ix_bundles_external_key", "external_key", "created_date"),)


class SubscriptionRow(Base):
    __tablename__ = "subscriptions"

    record_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, unique=True, default=uuid.uuid4)
    bundle_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("bundles.id"), nullable=False)
    base_entitlement_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    last_active_product_category: Mapped[str | None] = mapped_column(String(32), nullable=True)
    charged_through_date: Mapped[date | None] = mapped_column(Date(), nullable=True)
    created_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    bundle: Mapped[BundleRow] = relationship("billing_analytics.bundles.models.BundleRow", back_populates="subscriptions")


class AuditLogRow(Base):
    __tablename__ = "audit_log"

    record_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_record_id: Mapped[int] = mapped_column(Integer, nullable=False)
    table_name: Mapped[str] = mapped_column(String(64), nullable=False)
    target_record_id: Mapped[int] = mapped_column(Integer, nullable=False)
    change_type: Mapped[str] = mapped_column(String(32), nullable=False)
    created_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    reason_code: Mapped[str | None] = mapped_column(String(255), nullable=True)
    comments: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (Index("ix_audit_log_account", "account_record_id", "table_name", "target_record_id"),)


# Analytics schema


class SubscriptionTransitionRow(Base):
    __tablename__ = "analytics_subscription_transitions"

    record_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    bundle_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    bundle_external_key: Mapped[str] = mapped_column(String(255), nullable=False)
    subscription_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    event: Mapped[str] = mapped_column(String(64), nullable=False)
    next_product_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    next_product_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    next_product_category: Mapped[str | None] = mapped_column(String(32), nullable=True)
    next_slug: Mapped[str | None] = mapped_column(String(255), nullable=True)
    next_phase: Mapped[str | None] = mapped_column(String(32), nullable=True)
    next_billing_period: Mapped[str | None] = mapped_column(String(32), nullable=True)
    next_price_list: Mapped[str | None] = mapped_column(String(64), nullable=True)
    next_price: Mapped[Decimal | None] = mapped_column(Numeric(18, 6), nullable=True)
    next_mrr: Mapped[Decimal | None] = mapped_column(Numeric(18, 6), nullable=True)
    next_currency: Mapped[str | None] = mapped_column(String(16), nullable=True)
    next_service: Mapped[str | None] = mapped_column(String(64), nullable=True)
    next_state: Mapped[str | None] = mapped_column(String(32), nullable=True)
    next_start_date: Mapped[date | None] = mapped_column(Date(), nullable=True)
    next_end_date: Mapped[date | None] = mapped_column(Date(), nullable=True)

    __table_args__ = (Index("ix_analytics_subscription_transitions_account", "account_id", "next_start_date"),)


class CurrencyConversionRow(Base):
    __tablename__ = "analytics_currency_conversion"

    record_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    currency: Mapped[str] = mapped_column(String(16), nullable=False)
    start_date: Mapped[date] = mapped_column(Date(), nullable=False)
    end_date: Mapped[date] = mapped_column(Date(), nullable=False)
    reference_rate: Mapped[Decimal] = mapped_column(Numeric(18, 10), nullable=False)
    reference_currency: Mapped[str] = mapped_column(String(16), nullable=False)


class AnalyticsBundleRow(Base):
    __tablename__ = "analytics_bundles"

    record_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    account_record_id: Mapped[int] = mapped_column(Integer, nullable=False)
    account_external_key: Mapped[str] = mapped_column(String(255), nullable=False)
    account_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    bundle_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    bundle_record_id: Mapped[int] = mapped_column(Integer, nullable=False)
    bundle_external_key: Mapped[str] = mapped_column(String(255), nullable=False)
    subscription_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    bundle_account_rank: Mapped[int] = mapped_column(Integer, nullable=False)
    latest_for_bundle_external_key: Mapped[bool] = mapped_column(Boolean, nullable=False)
    charged_through_date: Mapped[date | None] = mapped_column(Date(), nullable=True)
    current_product_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    current_product_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    current_product_category: Mapped[str | None] = mapped_column(String(32), nullable=True)
    current_slug: Mapped[str | None] = mapped_column(String(255), nullable=True)
    current_phase: Mapped[str | None] = mapped_column(String(32), nullable=True)
    current_billing_period: Mapped[str | None] = mapped_column(String(32), nullable=True)
    current_price_list: Mapped[str | None] = mapped_column(String(64), nullable=True)
    current_price: Mapped[Decimal | None] = mapped_column(Numeric(18, 6), nullable=True)
    converted_current_price: Mapped[Decimal | None] = mapped_column(Numeric(18, 6), nullable=True)
    current_mrr: Mapped[Decimal | None] = mapped_column(Numeric(18, 6), nullable=True)
    converted_current_mrr: Mapped[Decimal | None] = mapped_column(Numeric(18, 6), nullable=True)
    current_currency: Mapped[str | None] = mapped_column(String(16), nullable=True)
    current_service: Mapped[str | None] = mapped_column(String(64), nullable=True)
    current_state: Mapped[str | None] = mapped_column(String(32), nullable=True)
    current_start_date: Mapped[date | None] = mapped_column(Date(), nullable=True)
    current_end_date: Mapped[date | None] = mapped_column(Date(), nullable=True)
    converted_currency: Mapped[str] = mapped_column(String(16), nullable=False)
    created_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_reason_code: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_comments: Mapped[str | None] = mapped_column(String(255), nullable=True)
    tenant_record_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    report_group: Mapped[str] = mapped_column(String(32), nullable=False)
    refreshed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("account_id", "bundle_id", name="uq_analytics_bundles_bundle"),
        Index("ix_analytics_bundles_account", "account_record_id", "tenant_record_id"),
    )
