# tenant_plexus/credentials/storage_interfaces.py
from abc import ABC, abstractmethod
from typing import Optional, List

from .models import (
    BackendKind,
    PlatformStore,
    PlatformStoreCreate,
    TenantConnectionDescriptor,
    VerificationStatus,
)


class AbstractCredentialStore(ABC):
    """
    Abstract base class for the registry of tenant connection descriptors.

    Implementations must keep at most one active descriptor per tenant and
    must never hard-delete a descriptor.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the storage backend and prepare it for operations."""
        pass

    @abstractmethod
    async def teardown(self) -> None:
        """Clean up resources and properly close the storage backend."""
        pass

    @abstractmethod
    async def get_descriptor(self, tenant_id: str) -> Optional[TenantConnectionDescriptor]:
        """
        Retrieve the descriptor used to connect to a tenant's database.

        Args:
            tenant_id: The tenant (store) identifier

        Returns:
            The active descriptor if one exists, otherwise the most recently
            updated inactive one, otherwise None
        """
        pass

    @abstractmethod
    async def save_descriptor(
        self,
        tenant_id: str,
        backend_kind: BackendKind,
        encrypted_credentials: str,
        host: Optional[str] = None,
        verification_status: VerificationStatus = VerificationStatus.PENDING
    ) -> TenantConnectionDescriptor:
        """
        Store a new active descriptor for a tenant.

        Any previously active descriptor for the tenant is deactivated first.
        """
        pass

    @abstractmethod
    async def deactivate(self, tenant_id: str) -> bool:
        """
        Deactivate the tenant's active descriptor.

        Returns:
            True if an active descriptor was deactivated, False if none existed
        """
        pass

    @abstractmethod
    async def record_verification(self, tenant_id: str, status: VerificationStatus) -> None:
        """Record the outcome of a connectivity test on the active descriptor."""
        pass

    @abstractmethod
    async def list_descriptors(
        self,
        active_only: bool = False,
        skip: int = 0,
        limit: int = 100
    ) -> List[TenantConnectionDescriptor]:
        pass


class AbstractStoreRegistry(ABC):
    """Master registry of stores, independent of whether a database is linked."""

    @abstractmethod
    async def initialize(self) -> None:
        pass

    @abstractmethod
    async def teardown(self) -> None:
        pass

    @abstractmethod
    async def get_store(self, tenant_id: str) -> Optional[PlatformStore]:
        pass

    @abstractmethod
    async def register_store(self, store_create: PlatformStoreCreate) -> PlatformStore:
        """
        Register a store, or return the existing entry if the tenant is already known.
        """
        pass

    @abstractmethod
    async def update_store(self, tenant_id: str, **fields) -> Optional[PlatformStore]:
        """Update the given fields. Returns None if the store is unknown."""
        pass

    @abstractmethod
    async def list_stores(self, skip: int = 0, limit: int = 100) -> List[PlatformStore]:
        pass
