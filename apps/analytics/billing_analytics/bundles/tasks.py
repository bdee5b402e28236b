from __future__ import annotations

import uuid

from billing_analytics.bundles.service import bundle_refresh_service
from billing_analytics.core.celery_app import celery_app
from billing_analytics.core.database import get_session_factory


@celery_app.task(name="analytics.refresh_account_bundles")
def refresh_account_bundles_task(account_id: str, correlation_id: str | None = None) -> dict[str, object]:
    result = bundle_refresh_service.refresh_account_bundles(
        get_session_factory(),
        uuid.UUID(account_id),
        correlation_id=correlation_id,
    )
    return {"account_id": str(result.account_id), "record_count": result.record_count}
