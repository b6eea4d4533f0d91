# tenant_plexus/provisioning/__init__.py

"""Schema and seed provisioning for tenant databases."""

from .channels import AdapterChannel, ExecutionChannel, ManagementApiChannel
from .layouts import PageLayoutSource
from .management_api import ManagementApiClient
from .models import (
    ManagementCredentials,
    ProvisioningChannel,
    ProvisioningOptions,
    ProvisioningResult,
    ProvisioningState,
    ProvisioningStep,
)
from .schema_builder import SchemaBundle, build_schema_artifacts
from .service import TenantProvisioner
from .theme_presets import AbstractThemePresetSource, SQLiteThemePresetSource

__all__ = [
    "AdapterChannel",
    "ExecutionChannel",
    "ManagementApiChannel",
    "PageLayoutSource",
    "ManagementApiClient",
    "ManagementCredentials",
    "ProvisioningChannel",
    "ProvisioningOptions",
    "ProvisioningResult",
    "ProvisioningState",
    "ProvisioningStep",
    "SchemaBundle",
    "build_schema_artifacts",
    "TenantProvisioner",
    "AbstractThemePresetSource",
    "SQLiteThemePresetSource",
]
