# tenant_plexus/connections/__init__.py

from .models import LiveConnection
from .resolver import ConnectionResolver

__all__ = [
    "LiveConnection",
    "ConnectionResolver",
]
