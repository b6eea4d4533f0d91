# tenant_plexus/connections/endpoints.py
import logging
from fastapi import APIRouter, Depends, Path
from typing import Annotated, Any, Dict, List

from .resolver import ConnectionResolver
from ..dependencies import get_admin_api_key, get_resolver

logger = logging.getLogger(__name__)

connections_admin_router = APIRouter(
    prefix="/admin/connections",
    tags=["Admin - Connections"],
    dependencies=[Depends(get_admin_api_key)]
)


@connections_admin_router.get("/", response_model=List[Dict[str, Any]])
@connections_admin_router.get("", response_model=List[Dict[str, Any]], include_in_schema=False)
async def list_cached_connections_endpoint(
    resolver: Annotated[ConnectionResolver, Depends(get_resolver)]
):
    """Connections currently cached in this process."""
    return resolver.cached_connections()


@connections_admin_router.delete("/")
@connections_admin_router.delete("", include_in_schema=False)
async def clear_all_connections_endpoint(
    resolver: Annotated[ConnectionResolver, Depends(get_resolver)]
) -> Dict[str, int]:
    evicted = await resolver.clear_cache()
    return {"evicted": evicted}


@connections_admin_router.delete("/{tenant_id}")
async def clear_tenant_connection_endpoint(
    tenant_id: Annotated[str, Path(description="The store whose cached connection to close")],
    resolver: Annotated[ConnectionResolver, Depends(get_resolver)]
) -> Dict[str, int]:
    evicted = await resolver.clear_cache(tenant_id)
    logger.info(f"API: Cleared cached connection for store '{tenant_id}' ({evicted} evicted)")
    return {"evicted": evicted}
