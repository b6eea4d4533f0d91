# tenant_plexus/credentials/models.py
from enum import Enum
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from datetime import datetime


class BackendKind(str, Enum):
    """The three supported tenant database access modes."""
    SUPABASE = "supabase"
    POSTGRESQL = "postgresql"
    MYSQL = "mysql"


class VerificationStatus(str, Enum):
    PENDING = "pending"
    CONNECTED = "connected"
    FAILED = "failed"


class TenantConnectionDescriptor(BaseModel):
    """
    One tenant's connection descriptor as held by the credential store.

    Only `encrypted_credentials` carries secrets; every other field is safe to
    display. At most one descriptor per tenant is active at a time.
    """
    id: str
    tenant_id: str
    backend_kind: BackendKind
    encrypted_credentials: str
    host: Optional[str] = Field(
        default=None,
        description="Non-sensitive host or project URL kept for display"
    )
    is_active: bool = True
    verification_status: VerificationStatus = VerificationStatus.PENDING
    last_verified_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class RestCredentials(BaseModel):
    """Credential field set for the REST-query backend."""
    project_url: str
    service_role_key: str
    schema_name: Optional[str] = Field(default=None, alias="schema")

    model_config = {"populate_by_name": True}


class SqlCredentials(BaseModel):
    """Credential field set shared by the two direct-SQL backends."""
    host: str
    port: Optional[int] = None
    database: str
    username: str
    password: str
    ssl: bool = False
    max_connections: Optional[int] = None


class TenantDatabaseRegister(BaseModel):
    """Request body for linking a database to a tenant."""
    tenant_id: str
    backend_kind: BackendKind
    credentials: Dict[str, Any] = Field(
        description="Backend-specific credential field set; encrypted before storage"
    )
    test_connection: bool = Field(
        default=True,
        description="Verify connectivity once saved and record the outcome"
    )


class TenantDatabaseInfo(BaseModel):
    """Non-sensitive view of a tenant's connection descriptor."""
    tenant_id: str
    backend_kind: BackendKind
    host: Optional[str] = None
    is_active: bool
    verification_status: VerificationStatus
    last_verified_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class ConnectionTestResult(BaseModel):
    success: bool
    message: str
    tenant_id: str


class PlatformStoreBase(BaseModel):
    """Master registry entry for a store known to the platform."""
    name: str
    slug: Optional[str] = None
    custom_domain: Optional[str] = Field(
        default=None,
        description="Primary custom domain, used for sitemap URLs when set"
    )
    status: str = "active"


class PlatformStoreCreate(PlatformStoreBase):
    tenant_id: str


class PlatformStore(PlatformStoreBase):
    tenant_id: str
    created_at: datetime

    class Config:
        from_attributes = True
