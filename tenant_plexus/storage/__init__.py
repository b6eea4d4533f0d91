# tenant_plexus/storage/__init__.py

"""Storage module initialization.

Provides access to the platform SQLite database that backs the
credential store, store registry and theme presets.
"""

from .sqlite_base import (
    get_sqlite_db_connection,
    init_sqlite_db,
    close_sqlite_db_connection
)

# Export public API for database operations
__all__ = [
    "get_sqlite_db_connection",
    "init_sqlite_db",
    "close_sqlite_db_connection"
]
