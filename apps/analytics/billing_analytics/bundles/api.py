from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session, sessionmaker

from billing_analytics.bundles.sanity import bundle_sanity_checker
from billing_analytics.bundles.schemas import BundleRefreshRead, SanityReportRead
from billing_analytics.bundles.service import bundle_refresh_service
from billing_analytics.context import get_correlation_id
from billing_analytics.core.database import get_db, get_session_factory
from billing_analytics.core.security import REFRESH_PERMISSION, SANITY_READ_PERMISSION, AuthUser, require_permissions
from billing_analytics.errors import AccountNotFoundError, AnalyticsRefreshError


router = APIRouter(prefix="/api/analytics", tags=["analytics", "bundles"])


@router.post("/accounts/{account_id}/bundles/refresh", response_model=BundleRefreshRead)
def refresh_account_bundles(
    account_id: uuid.UUID,
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
    _user: AuthUser = Depends(require_permissions(REFRESH_PERMISSION)),
) -> BundleRefreshRead:
    try:
        return bundle_refresh_service.refresh_account_bundles(
            session_factory,
            account_id,
            correlation_id=get_correlation_id(),
        )
    except AccountNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="account not found") from exc
    except AnalyticsRefreshError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc


@router.get("/sanity/bundles", response_model=SanityReportRead)
def bundle_sanity(
    account_id: uuid.UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions(SANITY_READ_PERMISSION)),
) -> SanityReportRead:
    return bundle_sanity_checker.run(db, account_id)
