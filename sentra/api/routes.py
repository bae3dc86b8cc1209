from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from sentra.api.deps import get_auth_context
from sentra.auth.api import auth_router
from sentra.business.billing.api import invoices_router
from sentra.business.payments.api import webhooks_router
from sentra.business.sales.api import sales_router
from sentra.core.config import get_settings
from sentra.core.rbac import require_permission
from sentra.crm.api import leads_router
from sentra.metrics import generate_metrics_payload, metrics_content_type
from sentra.platform.security.context import AuthContext

router = APIRouter()
router.include_router(auth_router)
router.include_router(leads_router)
router.include_router(sales_router)
router.include_router(invoices_router)
router.include_router(webhooks_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/me", tags=["auth"])
def me(ctx: AuthContext = Depends(get_auth_context)) -> dict[str, str]:
    return {
        "sub": str(ctx.user_id),
        "organization_id": str(ctx.organization_id),
        "role": ctx.role,
    }


@router.get("/metrics", tags=["system"])
def metrics(ctx: AuthContext = Depends(get_auth_context)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    require_permission(ctx, "system.metrics.read")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
