# tenant_plexus/storage/sqlite_base.py
import sqlite3
import logging
from pathlib import Path
from typing import Dict, Optional

from ..settings import settings

logger = logging.getLogger(__name__)

# One connection per platform database file for the application lifecycle
_db_connections: Dict[str, sqlite3.Connection] = {}


def _connection_key(db_path: str) -> str:
    if db_path == ":memory:":
        return db_path
    return str(Path(db_path).resolve())


async def get_sqlite_db_connection(db_path: Optional[str] = None) -> sqlite3.Connection:
    """
    Get or create the platform SQLite database connection.

    The platform database holds tenant connection descriptors, the master
    store registry and theme presets. Connections are cached per database
    path; the schema is initialized on first connection.

    Args:
        db_path: Database file path. Defaults to the configured sqlite_db_path.

    Raises:
        sqlite3.Error: If database connection fails
    """
    path = db_path or settings.sqlite_db_path
    key = _connection_key(path)
    conn = _db_connections.get(key)
    if conn is None:
        try:
            if key != ":memory:":
                # Ensure the database directory structure exists
                Path(key).parent.mkdir(parents=True, exist_ok=True)

            logger.info(f"Attempting to connect to platform SQLite DB at: {key}")

            conn = sqlite3.connect(key, check_same_thread=False)
            conn.row_factory = sqlite3.Row

            logger.info(f"Successfully connected to platform SQLite DB: {key}")

            await init_sqlite_db(conn)
            _db_connections[key] = conn
        except sqlite3.Error as e:
            logger.error(
                f"Error connecting to SQLite database at {path}: {e}",
                exc_info=True
            )
            raise
    return conn


async def init_sqlite_db(conn: Optional[sqlite3.Connection] = None):
    """
    Initialize the platform database schema.

    Uses IF NOT EXISTS so repeated initialization is safe.
    """
    db_conn = conn or await get_sqlite_db_connection()
    cursor = db_conn.cursor()

    # Encrypted connection descriptors, one active row per tenant at most
    cursor.execute('''
    CREATE TABLE IF NOT EXISTS tenant_databases (
        id TEXT PRIMARY KEY,
        tenant_id TEXT NOT NULL,
        backend_kind TEXT NOT NULL,
        encrypted_credentials TEXT NOT NULL,
        host TEXT,
        is_active INTEGER NOT NULL DEFAULT 1,
        verification_status TEXT NOT NULL DEFAULT 'pending',
        last_verified_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    ''')
    cursor.execute('''
    CREATE UNIQUE INDEX IF NOT EXISTS idx_tenant_databases_one_active
    ON tenant_databases (tenant_id) WHERE is_active = 1
    ''')
    logger.info("Ensured 'tenant_databases' table exists.")

    # Master registry of stores known to the platform
    cursor.execute('''
    CREATE TABLE IF NOT EXISTS platform_stores (
        tenant_id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        slug TEXT,
        custom_domain TEXT,
        status TEXT NOT NULL DEFAULT 'active',
        created_at TEXT NOT NULL
    )
    ''')
    logger.info("Ensured 'platform_stores' table exists.")

    # Theme presets merged into new store settings
    cursor.execute('''
    CREATE TABLE IF NOT EXISTS theme_presets (
        preset_name TEXT PRIMARY KEY,
        theme_settings TEXT NOT NULL,
        is_active INTEGER NOT NULL DEFAULT 1,
        is_system_default INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL
    )
    ''')
    logger.info("Ensured 'theme_presets' table exists.")

    db_conn.commit()
    logger.info("Platform SQLite database schema initialized/verified.")


async def close_sqlite_db_connection(db_path: Optional[str] = None):
    """
    Close one platform database connection, or all of them when no path is given.

    Should be called during application shutdown.
    """
    if db_path is not None:
        keys = [_connection_key(db_path)]
    else:
        keys = list(_db_connections.keys())

    for key in keys:
        conn = _db_connections.pop(key, None)
        if conn is not None:
            logger.info(f"Closing SQLite DB connection: {key}")
            conn.close()
            logger.info("SQLite DB connection closed.")
