from __future__ import annotations

import uuid
from collections.abc import Generator
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path

import pytest
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from billing_analytics import events
from billing_analytics.bundles.models import (
    AccountRow,
    AccountTagRow,
    AuditLogRow,
    BundleRow,
    CurrencyConversionRow,
    SubscriptionRow,
    SubscriptionTransitionRow,
)
from billing_analytics.core.config import get_settings
from billing_analytics.core.database import Base


@dataclass
class SeededAccount:
    account_id: uuid.UUID
    old_bundle_id: uuid.UUID
    bundle_id: uuid.UUID
    second_bundle_id: uuid.UUID
    base_subscription_id: uuid.UUID
    addon_subscription_id: uuid.UUID


@pytest.fixture()
def db_engine(tmp_path: Path) -> Generator[Engine, None, None]:
    # File backed so worker threads get their own connections
    engine = create_engine(
        f"sqlite+pysqlite:///{tmp_path / 'analytics.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def session_factory(db_engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=db_engine, autocommit=False, autoflush=False)


@pytest.fixture()
def db_session(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def setup_env() -> Generator[None, None, None]:
    get_settings.cache_clear()
    events.published_events.clear()
    yield
    get_settings.cache_clear()
    events.published_events.clear()


def _transition(
    account_id: uuid.UUID,
    bundle: BundleRow,
    subscription_id: uuid.UUID,
    event: str,
    start: date,
    **fields: object,
) -> SubscriptionTransitionRow:
    return SubscriptionTransitionRow(
        account_id=account_id,
        bundle_id=bundle.id,
        bundle_external_key=bundle.external_key,
        subscription_id=subscription_id,
        event=event,
        next_start_date=start,
        **fields,
    )


@pytest.fixture()
def seeded_account(session_factory: sessionmaker[Session]) -> SeededAccount:
    """One partner account with a cancelled bundle, its replacement and a second bundle.

    bx-old (cancelled) and bx share an external key; bx carries an add-on whose
    subscription row sorts before the base one.
    """
    account_id = uuid.uuid4()
    old_bundle_id, bundle_id, second_bundle_id = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
    old_base_id, base_id, addon_id, second_base_id = uuid.uuid4(), uuid.uuid4(), uuid.uuid4(), uuid.uuid4()

    with session_factory() as session, session.begin():
        account = AccountRow(
            id=account_id,
            external_key="acct-1",
            name="Acme Corp",
            currency="EUR",
            tenant_record_id=7,
            created_date=datetime(2025, 12, 1, 9, 0),
        )
        account.tags.append(AccountTagRow(name="PARTNER"))
        session.add(account)
        session.flush()

        old_bundle = BundleRow(
            id=old_bundle_id,
            external_key="bx",
            account_id=account_id,
            tenant_record_id=7,
            created_date=datetime(2026, 1, 1, 10, 0),
        )
        bundle = BundleRow(
            id=bundle_id,
            external_key="bx",
            account_id=account_id,
            tenant_record_id=7,
            created_date=datetime(2026, 2, 1, 10, 0),
        )
        second_bundle = BundleRow(
            id=second_bundle_id,
            external_key="by",
            account_id=account_id,
            tenant_record_id=7,
            created_date=datetime(2026, 2, 10, 10, 0),
        )
        session.add_all([old_bundle, bundle, second_bundle])
        session.flush()

        session.add_all(
            [
                SubscriptionRow(
                    id=old_base_id,
                    bundle_id=old_bundle_id,
                    base_entitlement_id=old_base_id,
                    category="BASE",
                    last_active_product_category="BASE",
                    charged_through_date=date(2026, 1, 20),
                ),
                SubscriptionRow(
                    id=addon_id,
                    bundle_id=bundle_id,
                    base_entitlement_id=base_id,
                    category="ADD_ON",
                    last_active_product_category="ADD_ON",
                    charged_through_date=date(2026, 3, 15),
                ),
                SubscriptionRow(
                    id=base_id,
                    bundle_id=bundle_id,
                    base_entitlement_id=base_id,
                    category="BASE",
                    last_active_product_category="BASE",
                    charged_through_date=date(2026, 4, 1),
                ),
                SubscriptionRow(
                    id=second_base_id,
                    bundle_id=second_bundle_id,
                    base_entitlement_id=second_base_id,
                    category="BASE",
                    last_active_product_category="BASE",
                    charged_through_date=None,
                ),
            ]
        )

        session.add_all(
            [
                AuditLogRow(
                    account_record_id=account.record_id,
                    table_name="BUNDLES",
                    target_record_id=old_bundle.record_id,
                    change_type="INSERT",
                    created_by="admin",
                    reason_code="NEW",
                    comments="first signup",
                ),
                AuditLogRow(
                    account_record_id=account.record_id,
                    table_name="BUNDLES",
                    target_record_id=bundle.record_id,
                    change_type="INSERT",
                    created_by="sales-bot",
                    reason_code="UPGRADE",
                    comments="re-signup",
                ),
                AuditLogRow(
                    account_record_id=account.record_id,
                    table_name="BUNDLES",
                    target_record_id=bundle.record_id,
                    change_type="UPDATE",
                    created_by="someone-else",
                    reason_code="EDIT",
                    comments=None,
                ),
            ]
        )

        plan = {
            "next_product_name": "Pro",
            "next_product_type": "BASE",
            "next_product_category": "BASE",
            "next_billing_period": "MONTHLY",
            "next_price_list": "DEFAULT",
            "next_currency": "EUR",
            "next_service": "entitlement-service",
        }
        session.add_all(
            [
                _transition(account_id, old_bundle, old_base_id, "START_ENTITLEMENT_BASE", date(2026, 1, 1),
                            next_slug="pro-monthly-trial", next_phase="TRIAL", next_price=Decimal("10"),
                            next_mrr=Decimal("10"), next_state="ACTIVE", **plan),
                _transition(account_id, old_bundle, old_base_id, "STOP_ENTITLEMENT_BASE", date(2026, 1, 20),
                            next_state="CANCELLED"),
                _transition(account_id, bundle, base_id, "START_ENTITLEMENT_BASE", date(2026, 2, 1),
                            next_slug="pro-monthly-trial", next_phase="TRIAL", next_price=Decimal("20"),
                            next_mrr=Decimal("20"), next_state="ACTIVE", **plan),
                _transition(account_id, second_bundle, second_base_id, "START_ENTITLEMENT_BASE", date(2026, 2, 10),
                            next_slug="pro-monthly-evergreen", next_phase="EVERGREEN", next_price=Decimal("30"),
                            next_mrr=Decimal("30"), next_state="ACTIVE", **plan),
                _transition(account_id, bundle, addon_id, "START_ENTITLEMENT_ADD_ON", date(2026, 2, 15),
                            next_product_name="Extra Seats", next_product_category="ADD_ON",
                            next_price=Decimal("5"), next_currency="EUR"),
                _transition(account_id, bundle, base_id, "CHANGE_PHASE", date(2026, 3, 1),
                            next_slug="pro-monthly-evergreen", next_phase="EVERGREEN", next_price=Decimal("25"),
                            next_mrr=Decimal("25"), next_state="ACTIVE", **plan),
            ]
        )

        session.add(
            CurrencyConversionRow(
                currency="EUR",
                start_date=date(2026, 1, 1),
                end_date=date(2026, 12, 31),
                reference_rate=Decimal("1.1"),
                reference_currency="USD",
            )
        )

    return SeededAccount(
        account_id=account_id,
        old_bundle_id=old_bundle_id,
        bundle_id=bundle_id,
        second_bundle_id=second_bundle_id,
        base_subscription_id=base_id,
        addon_subscription_id=addon_id,
    )
