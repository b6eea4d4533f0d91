# tests/conftest.py
import json
import logging
import sqlite3
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence

import pytest
from cryptography.fernet import Fernet

from tenant_plexus.adapters import sql
from tenant_plexus.adapters.base import Adapter, FilterSpec, QueryBuilder, normalize_filters
from tenant_plexus.connections.resolver import ConnectionResolver
from tenant_plexus.credentials.models import BackendKind
from tenant_plexus.credentials.sqlite_credential_store import SQLiteCredentialStore, SQLiteStoreRegistry
from tenant_plexus.errors import QueryError
from tenant_plexus.health.service import TenantHealthChecker
from tenant_plexus.provisioning.schema_builder import SchemaBundle, table_names
from tenant_plexus.provisioning.service import TenantProvisioner
from tenant_plexus.provisioning.theme_presets import SQLiteThemePresetSource
from tenant_plexus.settings import Settings
from tenant_plexus.storage.sqlite_base import close_sqlite_db_connection
from tenant_plexus.utils.security import FernetEncryptor

logger = logging.getLogger(__name__)

# Tenant schema in the SQLite dialect, mirroring the tables provisioning touches
SQLITE_TENANT_TABLES = """
CREATE TABLE IF NOT EXISTS stores (
  id TEXT PRIMARY KEY,
  user_id TEXT,
  name TEXT NOT NULL,
  slug TEXT UNIQUE,
  currency TEXT,
  timezone TEXT,
  is_active INTEGER DEFAULT 1,
  settings TEXT,
  contact_email TEXT,
  created_at TEXT DEFAULT CURRENT_TIMESTAMP,
  updated_at TEXT
);

CREATE TABLE IF NOT EXISTS users (
  id TEXT PRIMARY KEY,
  email TEXT NOT NULL UNIQUE,
  password TEXT,
  first_name TEXT,
  last_name TEXT,
  role TEXT,
  account_type TEXT,
  is_active INTEGER,
  email_verified INTEGER
);

CREATE TABLE IF NOT EXISTS languages (
  code TEXT PRIMARY KEY,
  name TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS categories (
  id TEXT PRIMARY KEY,
  store_id TEXT NOT NULL,
  slug TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS products (
  id TEXT PRIMARY KEY,
  store_id TEXT NOT NULL,
  name TEXT
);

CREATE TABLE IF NOT EXISTS customers (
  id TEXT PRIMARY KEY,
  store_id TEXT NOT NULL,
  email TEXT
);

CREATE TABLE IF NOT EXISTS sales_orders (
  id TEXT PRIMARY KEY,
  store_id TEXT NOT NULL,
  customer_id TEXT
);

CREATE TABLE IF NOT EXISTS custom_domains (
  id TEXT PRIMARY KEY DEFAULT (lower(hex(randomblob(16)))),
  store_id TEXT NOT NULL,
  domain TEXT NOT NULL,
  is_primary INTEGER DEFAULT 0
);

CREATE TABLE IF NOT EXISTS seo_settings (
  id TEXT PRIMARY KEY DEFAULT (lower(hex(randomblob(16)))),
  store_id TEXT NOT NULL UNIQUE,
  robots_txt_content TEXT,
  canonical_settings TEXT
);

CREATE TABLE IF NOT EXISTS slot_configurations (
  id TEXT PRIMARY KEY,
  user_id TEXT NOT NULL,
  store_id TEXT NOT NULL,
  configuration TEXT NOT NULL,
  version TEXT,
  version_number INTEGER,
  is_active INTEGER,
  status TEXT,
  page_type TEXT,
  published_at TEXT,
  parent_version_id TEXT,
  has_unpublished_changes INTEGER
);
"""

SQLITE_TENANT_SEED = """
INSERT OR IGNORE INTO languages (code, name) VALUES ('en', 'English');
INSERT OR IGNORE INTO categories (id, store_id, slug) VALUES ('{{STORE_ID}}-root', '{{STORE_ID}}', 'root-catalog');
"""


def _translate_sqlite_error(error: sqlite3.Error, table: Optional[str] = None) -> QueryError:
    message = str(error)
    if "no such table" in message:
        category = QueryError.UNDEFINED_TABLE
    elif "UNIQUE constraint failed" in message:
        category = QueryError.UNIQUE_VIOLATION
    else:
        category = QueryError.OTHER
    return QueryError(message, code=error.__class__.__name__, category=category, table=table)


class SQLiteTestAdapter(Adapter):
    """
    Adapter over a local SQLite file, standing in for a direct-SQL tenant backend.

    Records every script and insert so tests can assert on what a run did.
    """

    backend_kind = BackendKind.POSTGRESQL

    def __init__(self, database_path: str, reachable: bool = True, supports_raw_sql: bool = True):
        super().__init__()
        self.database_path = str(database_path)
        self.reachable = reachable
        self.supports_raw_sql = supports_raw_sql
        self.probe_count = 0
        self.scripts: List[str] = []
        self.inserted_tables: List[str] = []
        self._conn: Optional[sqlite3.Connection] = None

    def _connection(self) -> sqlite3.Connection:
        if not self.reachable:
            raise QueryError(
                "could not connect to server: Connection refused",
                code="08006",
                category=QueryError.CONNECTION
            )
        if self._conn is None:
            self._conn = sqlite3.connect(self.database_path)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    @staticmethod
    def _bindable(values: Sequence[Any]) -> List[Any]:
        bound = []
        for value in values:
            if isinstance(value, (datetime, date)):
                value = value.isoformat()
            elif isinstance(value, (dict, list)):
                value = json.dumps(value)
            bound.append(value)
        return bound

    def _execute(self, statement: str, params: Sequence[Any] = (), table: Optional[str] = None) -> List[Dict[str, Any]]:
        conn = self._connection()
        try:
            cursor = conn.execute(statement, self._bindable(params))
            rows = [dict(row) for row in cursor.fetchall()]
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise _translate_sqlite_error(e, table) from e
        return rows

    async def test_connection(self, probe_table: str = "stores") -> bool:
        self.probe_count += 1
        return await super().test_connection(probe_table)

    async def _run_select(self, query: QueryBuilder) -> List[Dict[str, Any]]:
        statement, params = sql.compile_select(query, sql.SQLITE)
        return self._execute(statement, params, query.table)

    async def insert(self, table, rows) -> List[Dict[str, Any]]:
        payload = self._as_rows(rows)
        self.inserted_tables.append(table)
        for statement, params in sql.compile_insert(table, payload, sql.SQLITE):
            self._execute(statement, params, table)
        return payload

    async def update(self, table: str, patch: Dict[str, Any], filters: FilterSpec) -> List[Dict[str, Any]]:
        filter_list = normalize_filters(filters)
        statement, params = sql.compile_update(table, patch, filter_list, sql.SQLITE)
        self._execute(statement, params, table)
        query = self.select_from(table)
        query.filters.extend(filter_list)
        return await query.run()

    async def delete(self, table: str, filters: FilterSpec) -> bool:
        statement, params = sql.compile_delete(table, normalize_filters(filters), sql.SQLITE)
        self._execute(statement, params, table)
        return True

    async def execute_raw(self, statement: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        return self._execute(statement, list(params or []))

    async def execute_script(self, script: str) -> None:
        self.scripts.append(script)
        conn = self._connection()
        try:
            conn.executescript(script)
        except sqlite3.Error as e:
            raise _translate_sqlite_error(e) from e

    async def _close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def describe(self) -> Dict[str, Any]:
        return {"backend_kind": self.backend_kind.value, "database": self.database_path}


class RecordingAdapterFactory:
    """Adapter factory for the resolver that builds SQLiteTestAdapters and remembers them."""

    def __init__(self):
        self.built: List[SQLiteTestAdapter] = []
        self.reachable = True

    def __call__(self, backend_kind, credentials, settings) -> SQLiteTestAdapter:
        adapter = SQLiteTestAdapter(credentials["database"], reachable=self.reachable)
        self.built.append(adapter)
        return adapter

    @property
    def probe_count(self) -> int:
        return sum(adapter.probe_count for adapter in self.built)


class FailingEncryptor(FernetEncryptor):
    """Counts decrypt calls and never succeeds."""

    def __init__(self):
        super().__init__(Fernet.generate_key().decode())
        self.decrypt_calls = 0

    def decrypt(self, encrypted_data: str) -> Optional[str]:
        self.decrypt_calls += 1
        return None


def sql_credentials(database_path) -> Dict[str, Any]:
    return {
        "host": "localhost",
        "port": 5432,
        "database": str(database_path),
        "username": "store_owner",
        "password": "s3cret",
    }


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        sqlite_db_path=str(tmp_path / "platform.sqlite3"),
        plexus_encryption_key=Fernet.generate_key().decode(),
        admin_api_key="test-admin-key",
        platform_public_url="https://shops.example.com",
    )


@pytest.fixture
def encryptor(test_settings) -> FernetEncryptor:
    return FernetEncryptor(test_settings.plexus_encryption_key)


@pytest.fixture
async def credential_store(test_settings):
    store = SQLiteCredentialStore(test_settings.sqlite_db_path)
    await store.initialize()
    yield store
    await close_sqlite_db_connection(test_settings.sqlite_db_path)


@pytest.fixture
async def store_registry(test_settings, credential_store):
    registry = SQLiteStoreRegistry(test_settings.sqlite_db_path)
    await registry.initialize()
    return registry


@pytest.fixture
def theme_presets(test_settings, credential_store) -> SQLiteThemePresetSource:
    return SQLiteThemePresetSource(test_settings.sqlite_db_path)


@pytest.fixture
def adapter_factory() -> RecordingAdapterFactory:
    return RecordingAdapterFactory()


@pytest.fixture
async def resolver(credential_store, encryptor, test_settings, adapter_factory):
    connection_resolver = ConnectionResolver(
        credential_store, encryptor, test_settings, adapter_factory=adapter_factory
    )
    yield connection_resolver
    await connection_resolver.close_all()
    for adapter in adapter_factory.built:
        await adapter.close()


@pytest.fixture
def tenant_db_path(tmp_path):
    return tmp_path / "tenant_store.sqlite3"


@pytest.fixture
def register_tenant(credential_store, encryptor):
    """Store encrypted SQL credentials pointing at a local SQLite file."""

    async def _register(tenant_id: str, database_path, backend_kind: BackendKind = BackendKind.POSTGRESQL):
        return await credential_store.save_descriptor(
            tenant_id,
            backend_kind,
            encryptor.encrypt_credentials(sql_credentials(database_path))
        )

    return _register


@pytest.fixture
def sqlite_schema_bundle() -> SchemaBundle:
    return SchemaBundle(
        tables_sql=SQLITE_TENANT_TABLES,
        constraints_sql="",
        seed_sql=SQLITE_TENANT_SEED,
        table_names=table_names(SQLITE_TENANT_TABLES),
    )


@pytest.fixture
def provisioner(resolver, test_settings, store_registry, theme_presets, sqlite_schema_bundle) -> TenantProvisioner:
    return TenantProvisioner(
        resolver,
        test_settings,
        store_registry=store_registry,
        theme_presets=theme_presets,
        schema_bundle=sqlite_schema_bundle,
    )


@pytest.fixture
def health_checker(credential_store, resolver, test_settings, store_registry) -> TenantHealthChecker:
    return TenantHealthChecker(credential_store, resolver, test_settings, store_registry=store_registry)


@pytest.fixture
def read_tenant_rows(tenant_db_path):
    """Read rows straight from the tenant SQLite file, bypassing every adapter."""

    def _read(statement: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        conn = sqlite3.connect(str(tenant_db_path))
        conn.row_factory = sqlite3.Row
        try:
            return [dict(row) for row in conn.execute(statement, params).fetchall()]
        finally:
            conn.close()

    return _read
