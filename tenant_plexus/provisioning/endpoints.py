# tenant_plexus/provisioning/endpoints.py
import logging
from fastapi import APIRouter, Body, Depends, HTTPException, Path, status
from typing import Annotated, Any, Dict, Optional

from .models import ProvisioningOptions, ProvisioningResult, StoreNameUpdate
from .service import TenantProvisioner
from ..dependencies import get_admin_api_key, get_provisioner, http_error_for
from ..errors import TenantPlexusError

logger = logging.getLogger(__name__)

provisioning_admin_router = APIRouter(
    prefix="/admin/tenants",
    tags=["Admin - Provisioning"],
    dependencies=[Depends(get_admin_api_key)]
)


@provisioning_admin_router.post("/{tenant_id}/provision", response_model=ProvisioningResult)
async def provision_tenant_endpoint(
    tenant_id: Annotated[str, Path(description="The store to provision")],
    provisioner: Annotated[TenantProvisioner, Depends(get_provisioner)],
    options: Annotated[Optional[ProvisioningOptions], Body()] = None
):
    """
    Create schema, seed data and bootstrap rows for a store database.
    An already provisioned store is reported as a success with `already_provisioned` set.
    """
    logger.info(f"API: Provisioning requested for store '{tenant_id}'")
    return await provisioner.provision(tenant_id, options)


@provisioning_admin_router.post("/{tenant_id}/reprovision", response_model=ProvisioningResult)
async def reprovision_tenant_endpoint(
    tenant_id: Annotated[str, Path(description="The store to reprovision")],
    provisioner: Annotated[TenantProvisioner, Depends(get_provisioner)],
    options: Annotated[Optional[ProvisioningOptions], Body()] = None
):
    """Clear the cached connection and run every provisioning step again."""
    logger.info(f"API: Reprovisioning requested for store '{tenant_id}'")
    return await provisioner.reprovision(tenant_id, options)


@provisioning_admin_router.put("/{tenant_id}/store-name")
async def update_store_name_endpoint(
    tenant_id: Annotated[str, Path(description="The store to rename")],
    update: StoreNameUpdate,
    provisioner: Annotated[TenantProvisioner, Depends(get_provisioner)]
) -> Dict[str, Any]:
    try:
        store = await provisioner.update_store_name(tenant_id, update.name)
    except TenantPlexusError as e:
        logger.warning(f"API: Renaming store '{tenant_id}' failed: {e.message}")
        raise http_error_for(e)
    except Exception as e:
        logger.error(f"API: Unexpected error renaming store '{tenant_id}': {e}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Could not rename store.")
    return {"tenant_id": tenant_id, "name": store.get("name", update.name)}
