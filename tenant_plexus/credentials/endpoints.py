# tenant_plexus/credentials/endpoints.py
import logging
from fastapi import APIRouter, Depends, HTTPException, Path, Query, status
from typing import List, Annotated

from .models import ConnectionTestResult, TenantDatabaseInfo, TenantDatabaseRegister
from .service import CredentialService
from ..dependencies import get_admin_api_key, get_credential_service, http_error_for
from ..errors import TenantPlexusError

logger = logging.getLogger(__name__)

# Admin router for tenant database credentials - requires admin API key authentication
tenant_databases_admin_router = APIRouter(
    prefix="/admin/tenant-databases",
    tags=["Admin - Tenant Databases"],
    dependencies=[Depends(get_admin_api_key)]
)


@tenant_databases_admin_router.post("/", response_model=TenantDatabaseInfo, status_code=status.HTTP_201_CREATED)
async def register_tenant_database_endpoint(
    registration: TenantDatabaseRegister,
    service: Annotated[CredentialService, Depends(get_credential_service)]
):
    """Store encrypted credentials as the tenant's active database. Replaces any previous one."""
    logger.info(f"API: Registering {registration.backend_kind.value} database for store '{registration.tenant_id}'")
    try:
        return await service.register(registration)
    except TenantPlexusError as e:
        logger.warning(f"API: Database registration failed for store '{registration.tenant_id}': {e.message}")
        raise http_error_for(e)
    except Exception as e:
        logger.error(f"API: Unexpected error registering database for '{registration.tenant_id}': {e}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Could not register database.")


@tenant_databases_admin_router.get("/", response_model=List[TenantDatabaseInfo])
@tenant_databases_admin_router.get("", response_model=List[TenantDatabaseInfo], include_in_schema=False)
async def list_tenant_databases_endpoint(
    service: Annotated[CredentialService, Depends(get_credential_service)],
    active_only: Annotated[bool, Query(description="Only list active descriptors.")] = False,
    skip: Annotated[int, Query(ge=0)] = 0,
    limit: Annotated[int, Query(ge=1, le=100)] = 100
):
    return await service.list_connections(active_only=active_only, skip=skip, limit=limit)


@tenant_databases_admin_router.get("/{tenant_id}", response_model=TenantDatabaseInfo)
async def get_tenant_database_endpoint(
    tenant_id: Annotated[str, Path(description="The store whose database to describe")],
    service: Annotated[CredentialService, Depends(get_credential_service)]
):
    """Non-sensitive connection details. Credentials are never returned."""
    info = await service.get_connection_info(tenant_id)
    if not info:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No database configured for this store")
    return info


@tenant_databases_admin_router.post("/{tenant_id}/test", response_model=ConnectionTestResult)
async def test_tenant_database_endpoint(
    tenant_id: Annotated[str, Path(description="The store whose connection to test")],
    service: Annotated[CredentialService, Depends(get_credential_service)]
):
    return await service.test_connection(tenant_id)


@tenant_databases_admin_router.delete("/{tenant_id}", status_code=status.HTTP_204_NO_CONTENT)
async def deactivate_tenant_database_endpoint(
    tenant_id: Annotated[str, Path(description="The store whose database to deactivate")],
    service: Annotated[CredentialService, Depends(get_credential_service)]
):
    """Deactivate the store's database. The descriptor is kept, not deleted."""
    if not await service.deactivate(tenant_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No active database for this store")
    return None
