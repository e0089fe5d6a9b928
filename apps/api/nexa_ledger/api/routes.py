from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from nexa_ledger.business.reporting.finance.api import router as ledger_reports_router
from nexa_ledger.core.auth import AuthUser, get_current_user
from nexa_ledger.core.config import get_settings
from nexa_ledger.metrics import generate_metrics_payload, metrics_content_type
from nexa_ledger.platform.ledger.api import router as ledger_router

router = APIRouter()
router.include_router(ledger_router)
router.include_router(ledger_reports_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/me", tags=["auth"])
async def me(user: AuthUser = Depends(get_current_user)) -> dict[str, str | list[str]]:
    return {
        "sub": user.sub,
        "roles": user.roles,
    }


@router.get("/metrics", tags=["system"])
def metrics(user: AuthUser = Depends(get_current_user)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    if "system.metrics.read" not in user.roles:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Missing permission: system.metrics.read")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
