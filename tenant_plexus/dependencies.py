# tenant_plexus/dependencies.py
import logging
from fastapi import HTTPException, status, Header
from typing import Optional, Annotated

from .core.global_registry import get_platform_components
from .connections.resolver import ConnectionResolver
from .credentials.service import CredentialService
from .errors import (
    ConfigurationError,
    ConnectionError,
    CredentialError,
    InactiveError,
    NotConfiguredError,
    TenantPlexusError,
    UnsupportedOperationError,
)
from .health.service import TenantHealthChecker
from .provisioning.service import TenantProvisioner
from .settings import settings

logger = logging.getLogger(__name__)

_ERROR_STATUS = (
    (NotConfiguredError, status.HTTP_404_NOT_FOUND),
    (InactiveError, status.HTTP_409_CONFLICT),
    (ConfigurationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (UnsupportedOperationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ConnectionError, status.HTTP_502_BAD_GATEWAY),
    (CredentialError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


async def get_admin_api_key(
    x_admin_api_key: Annotated[
        Optional[str],
        Header(description="The API Key for accessing admin routes.")
    ] = None
) -> str:
    """
    Validates admin API key authentication for protected admin endpoints.

    Returns the validated API key if authentication succeeds.
    Raises HTTPException with appropriate status codes for various failure scenarios.
    """
    # Ensure server has admin API key configured before processing requests
    if not settings.admin_api_key:
        logger.critical("ADMIN_API_KEY is not configured on the server. Admin endpoints are effectively disabled.")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin API service is not configured properly (API Key missing on server).",
        )

    # Check if client provided the required authentication header
    if not x_admin_api_key:
        logger.warning("Admin API: Missing X-Admin-API-Key header.")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated: X-Admin-API-Key header missing.",
            headers={"WWW-Authenticate": 'Basic realm="Admin Area"'},
        )

    # Validate the provided API key against server configuration
    if x_admin_api_key != settings.admin_api_key:
        logger.warning("Admin API: Invalid X-Admin-API-Key provided.")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Forbidden: Invalid API Key.",
            headers={"WWW-Authenticate": 'Basic realm="Admin Area"'},
        )

    return x_admin_api_key


async def get_resolver() -> ConnectionResolver:
    return get_platform_components().resolver


async def get_credential_service() -> CredentialService:
    return get_platform_components().credential_service


async def get_provisioner() -> TenantProvisioner:
    return get_platform_components().provisioner


async def get_health_checker() -> TenantHealthChecker:
    return get_platform_components().health_checker


def http_error_for(error: TenantPlexusError) -> HTTPException:
    """Translate a data-access error into the HTTP error an admin client sees."""
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=error.message)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=error.message)
