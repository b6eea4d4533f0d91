# tenant_plexus/credentials/service.py
import logging
from typing import List, Optional
from urllib.parse import urlparse

from .models import (
    BackendKind,
    ConnectionTestResult,
    TenantConnectionDescriptor,
    TenantDatabaseInfo,
    TenantDatabaseRegister,
    VerificationStatus,
)
from .storage_interfaces import AbstractCredentialStore
from ..adapters.factory import required_fields
from ..connections.resolver import ConnectionResolver
from ..errors import ConfigurationError, CredentialError
from ..utils.security import FernetEncryptor

logger = logging.getLogger(__name__)


def _display_host(backend_kind: BackendKind, credentials: dict) -> Optional[str]:
    if backend_kind == BackendKind.SUPABASE:
        return urlparse(str(credentials.get("project_url", ""))).netloc or None
    host = credentials.get("host")
    port = credentials.get("port")
    if host and port:
        return f"{host}:{port}"
    return host


def _to_info(descriptor: TenantConnectionDescriptor) -> TenantDatabaseInfo:
    return TenantDatabaseInfo(**descriptor.model_dump(exclude={"id", "encrypted_credentials"}))


class CredentialService:
    """
    Registers and maintains tenant database credentials.

    Credentials are encrypted before they reach the store and are never
    returned; callers only see TenantDatabaseInfo. Any change to a tenant's
    descriptor evicts its cached connection so the next resolve picks it up.
    """

    def __init__(
        self,
        credential_store: AbstractCredentialStore,
        encryptor: FernetEncryptor,
        resolver: ConnectionResolver
    ):
        self.credential_store = credential_store
        self.encryptor = encryptor
        self.resolver = resolver

    async def register(self, registration: TenantDatabaseRegister) -> TenantDatabaseInfo:
        """
        Encrypt and store a credential field set as the tenant's active descriptor.

        Raises:
            ConfigurationError: Required credential fields are missing
            CredentialError: The credentials could not be encrypted
        """
        tenant_id = registration.tenant_id
        kind = registration.backend_kind
        logger.info(f"Service: Registering {kind.value} database for store {tenant_id}")

        missing = [name for name in required_fields(kind) if not registration.credentials.get(name)]
        if missing:
            raise ConfigurationError(
                f"Missing required {kind.value} credential fields: {', '.join(missing)}",
                tenant_id=tenant_id
            )

        encrypted = self.encryptor.encrypt_credentials(registration.credentials)
        if encrypted is None:
            raise CredentialError(tenant_id, "Unable to encrypt database credentials")

        descriptor = await self.credential_store.save_descriptor(
            tenant_id,
            kind,
            encrypted,
            host=_display_host(kind, registration.credentials)
        )
        # Any cached adapter still holds the previous credentials
        await self.resolver.clear_cache(tenant_id)

        if registration.test_connection:
            outcome = await self.test_connection(tenant_id)
            if not outcome.success:
                logger.warning(f"Service: Saved credentials for store {tenant_id} failed verification: {outcome.message}")
            descriptor = await self.credential_store.get_descriptor(tenant_id) or descriptor

        return _to_info(descriptor)

    async def test_connection(self, tenant_id: str) -> ConnectionTestResult:
        """Resolve without caching and record the verification outcome on the descriptor."""
        logger.info(f"Service: Testing database connection for store {tenant_id}")
        outcome = ConnectionTestResult(**await self.resolver.test_tenant_connection(tenant_id))

        descriptor = await self.credential_store.get_descriptor(tenant_id)
        if descriptor is not None and descriptor.is_active:
            await self.credential_store.record_verification(
                tenant_id,
                VerificationStatus.CONNECTED if outcome.success else VerificationStatus.FAILED
            )
        return outcome

    async def get_connection_info(self, tenant_id: str) -> Optional[TenantDatabaseInfo]:
        descriptor = await self.credential_store.get_descriptor(tenant_id)
        return _to_info(descriptor) if descriptor else None

    async def list_connections(
        self,
        active_only: bool = False,
        skip: int = 0,
        limit: int = 100
    ) -> List[TenantDatabaseInfo]:
        descriptors = await self.credential_store.list_descriptors(active_only=active_only, skip=skip, limit=limit)
        return [_to_info(d) for d in descriptors]

    async def deactivate(self, tenant_id: str) -> bool:
        """Deactivate the tenant's descriptor (kept for audit) and drop its cached connection."""
        logger.info(f"Service: Deactivating database for store {tenant_id}")
        deactivated = await self.credential_store.deactivate(tenant_id)
        await self.resolver.clear_cache(tenant_id)
        return deactivated
