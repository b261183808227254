from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from bizsuite.core.auth import AuthUser, get_current_user
from bizsuite.core.config import Settings, get_settings
from bizsuite.crm.api import router as crm_companies_router
from bizsuite.metrics import generate_metrics_payload, metrics_content_type
from bizsuite.pms.api import router as pms_router

METRICS_PERMISSION = "system.metrics.read"

router = APIRouter()
router.include_router(crm_companies_router)
router.include_router(pms_router)


def require_metrics_reader(user: AuthUser = Depends(get_current_user)) -> AuthUser:
    # Hidden entirely unless enabled, so the permission check comes second.
    if not get_settings().metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    if METRICS_PERMISSION not in user.roles:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Missing permission: {METRICS_PERMISSION}")
    return user


@router.get("/health", tags=["system"])
def health(settings: Settings = Depends(get_settings)) -> dict[str, str | int]:
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
        "hierarchy_max_depth": settings.hierarchy_max_depth,
    }


@router.get("/me", tags=["auth"])
async def me(user: AuthUser = Depends(get_current_user)) -> dict[str, str | list[str] | None]:
    return {"sub": user.sub, "roles": user.roles, "tenant_id": user.tenant_id}


@router.get("/metrics", tags=["system"], dependencies=[Depends(require_metrics_reader)])
def metrics() -> Response:
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
