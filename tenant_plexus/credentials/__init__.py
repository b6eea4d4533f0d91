# tenant_plexus/credentials/__init__.py

from .models import (
    BackendKind,
    ConnectionTestResult,
    PlatformStore,
    PlatformStoreCreate,
    TenantConnectionDescriptor,
    TenantDatabaseInfo,
    TenantDatabaseRegister,
    VerificationStatus,
)
from .storage_interfaces import AbstractCredentialStore, AbstractStoreRegistry
from .sqlite_credential_store import (
    SQLiteCredentialStore,
    SQLiteStoreRegistry,
)

__all__ = [
    "BackendKind",
    "ConnectionTestResult",
    "PlatformStore",
    "PlatformStoreCreate",
    "TenantConnectionDescriptor",
    "TenantDatabaseInfo",
    "TenantDatabaseRegister",
    "VerificationStatus",
    "AbstractCredentialStore",
    "AbstractStoreRegistry",
    "SQLiteCredentialStore",
    "SQLiteStoreRegistry",
]
