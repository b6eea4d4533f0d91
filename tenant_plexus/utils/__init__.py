# tenant_plexus/utils/__init__.py

"""
Utility module initialization file.

Exposes credential encryption and slug helpers used across the
tenant data-access layer.
"""

from .security import FernetEncryptor, generate_fernet_key
from .slugs import generate_slug

# Export public API for the utils package
__all__ = ["FernetEncryptor", "generate_fernet_key", "generate_slug"]
