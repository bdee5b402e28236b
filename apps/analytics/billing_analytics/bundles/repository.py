from __future__ import annotations

import uuid
from collections.abc import Sequence

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from billing_analytics.bundles.models import AnalyticsBundleRow
from billing_analytics.bundles.schemas import BundleRecord


class AnalyticsBundleRepository:
    def replace_account_bundles(self, session: Session, account_id: uuid.UUID, records: Sequence[BundleRecord]) -> int:
        """Swap the account's bundle rows for ``records``; the caller owns the transaction."""
        session.execute(delete(AnalyticsBundleRow).where(AnalyticsBundleRow.account_id == account_id))
        session.add_all(AnalyticsBundleRow(**record.model_dump()) for record in records)
        session.flush()
        return len(records)

    def list_account_bundles(self, session: Session, account_id: uuid.UUID) -> list[AnalyticsBundleRow]:
        stmt = (
            select(AnalyticsBundleRow)
            .where(AnalyticsBundleRow.account_id == account_id)
            .order_by(AnalyticsBundleRow.bundle_account_rank.asc())
        )
        return list(session.scalars(stmt).all())
