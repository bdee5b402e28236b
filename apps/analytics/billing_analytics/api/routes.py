from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from billing_analytics.bundles import router as bundles_router
from billing_analytics.core.config import get_settings
from billing_analytics.core.security import METRICS_READ_PERMISSION, AuthUser, require_permissions
from billing_analytics.metrics import generate_metrics_payload, metrics_content_type

router = APIRouter()
router.include_router(bundles_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.app_env,
    }


@router.get("/metrics", tags=["system"])
def metrics(_user: AuthUser = Depends(require_permissions(METRICS_READ_PERMISSION))) -> Response:
    if not get_settings().metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
