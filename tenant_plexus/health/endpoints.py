# tenant_plexus/health/endpoints.py
import logging
from fastapi import APIRouter, Depends, Path
from typing import Annotated

from .models import TenantHealthReport
from .service import TenantHealthChecker
from ..dependencies import get_admin_api_key, get_health_checker

logger = logging.getLogger(__name__)

health_admin_router = APIRouter(
    prefix="/admin/tenants",
    tags=["Admin - Health"],
    dependencies=[Depends(get_admin_api_key)]
)


@health_admin_router.get("/{tenant_id}/health", response_model=TenantHealthReport)
async def tenant_health_endpoint(
    tenant_id: Annotated[str, Path(description="The store to diagnose")],
    checker: Annotated[TenantHealthChecker, Depends(get_health_checker)]
):
    """Classify the store database's provisioning state. Always answers 200 with a status."""
    return await checker.check_health(tenant_id)
