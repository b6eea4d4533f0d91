# tenant_plexus/errors.py
from typing import Any, Dict, Optional

from pydantic import BaseModel


class TenantPlexusError(Exception):
    """Base class for every error raised by the tenant data-access layer."""

    def __init__(self, message: str, tenant_id: Optional[str] = None):
        self.message = message
        self.tenant_id = tenant_id
        super().__init__(message)


class NotConfiguredError(TenantPlexusError):
    """No connection descriptor exists for the tenant."""

    def __init__(self, tenant_id: Optional[str], message: Optional[str] = None):
        super().__init__(
            message or f"No database configured for store {tenant_id}. Please connect a database first.",
            tenant_id=tenant_id
        )


class InactiveError(TenantPlexusError):
    """The tenant's connection descriptor has been deactivated."""

    def __init__(self, tenant_id: str, message: Optional[str] = None):
        super().__init__(message or f"Database for store {tenant_id} is inactive", tenant_id=tenant_id)


class CredentialError(TenantPlexusError):
    """Encrypted credentials could not be decrypted or decoded."""

    def __init__(self, tenant_id: Optional[str], message: str = "Unable to decrypt database credentials"):
        super().__init__(message, tenant_id=tenant_id)


class ConfigurationError(TenantPlexusError):
    """Decrypted credentials are missing fields required to build an adapter."""


class ConnectionError(TenantPlexusError):
    """
    The tenant backend could not be reached with the stored credentials.

    Carries the backend's diagnostic message when one is available.
    """

    def __init__(self, tenant_id: Optional[str], message: str, diagnostic: Optional[str] = None):
        self.diagnostic = diagnostic
        super().__init__(message, tenant_id=tenant_id)


class QueryError(TenantPlexusError):
    """
    A single operation against an established connection failed.

    `code` is the backend's native error code (SQLSTATE, PostgREST code or
    MySQL error number as a string). `category` is the backend-independent
    classification callers should branch on.
    """

    UNDEFINED_TABLE = "undefined_table"
    UNIQUE_VIOLATION = "unique_violation"
    CONNECTION = "connection"
    OTHER = "other"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        category: str = OTHER,
        details: Optional[Any] = None,
        table: Optional[str] = None
    ):
        self.code = code
        self.category = category
        self.details = details
        self.table = table
        super().__init__(message)

    @property
    def is_undefined_table(self) -> bool:
        return self.category == self.UNDEFINED_TABLE

    @property
    def is_unique_violation(self) -> bool:
        return self.category == self.UNIQUE_VIOLATION

    def __str__(self) -> str:
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message


class UnsupportedOperationError(TenantPlexusError):
    """The backend does not permit the requested operation over its access channel."""


class ManagementApiError(TenantPlexusError):
    """The remote management API rejected a SQL batch or could not be reached."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        payload: Optional[Any] = None
    ):
        self.status_code = status_code
        self.payload = payload
        super().__init__(message)


class StepError(BaseModel):
    """A provisioning step failure. Recorded in the run result, never raised."""
    step: str
    error: str
    detail: Optional[Dict[str, Any]] = None
