# tenant_plexus/core/__init__.py

"""
Composition root for Tenant Plexus.

Builds the credential store, connection resolver, provisioner and health
checker from one Settings instance and holds them for the API layer.
"""

from .global_registry import (
    PlatformComponents,
    build_platform_components,
    get_platform_components,
    set_platform_components,
)

__all__ = [
    "PlatformComponents",
    "build_platform_components",
    "get_platform_components",
    "set_platform_components",
]
