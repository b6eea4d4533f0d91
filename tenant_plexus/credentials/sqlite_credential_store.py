# tenant_plexus/credentials/sqlite_credential_store.py
import sqlite3
import logging
import uuid
from typing import Optional, List
from datetime import datetime, timezone

from .storage_interfaces import AbstractCredentialStore, AbstractStoreRegistry
from .models import (
    BackendKind,
    PlatformStore,
    PlatformStoreCreate,
    TenantConnectionDescriptor,
    VerificationStatus,
)
from ..storage.sqlite_base import get_sqlite_db_connection

logger = logging.getLogger(__name__)


def _parse_timestamp(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


class _SQLiteStoreBase:
    """Shared query helpers for stores backed by the platform database."""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path

    async def _execute_query(self, query: str, params: tuple = (), commit: bool = True) -> sqlite3.Cursor:
        """
        Execute a SQL query with error handling and transaction management.

        Raises:
            sqlite3.Error: If query execution fails
        """
        conn = await get_sqlite_db_connection(self.db_path)
        cursor = conn.cursor()
        try:
            cursor.execute(query, params)
            if commit:
                conn.commit()
        except sqlite3.Error as e:
            logger.error(f"SQLite error executing query '{query}': {e}", exc_info=True)
            if commit:
                conn.rollback()
            raise
        return cursor

    async def _fetchone(self, query: str, params: tuple = ()) -> Optional[sqlite3.Row]:
        cursor = await self._execute_query(query, params, commit=False)
        return cursor.fetchone()

    async def _fetchall(self, query: str, params: tuple = ()) -> List[sqlite3.Row]:
        cursor = await self._execute_query(query, params, commit=False)
        return cursor.fetchall()


class SQLiteCredentialStore(_SQLiteStoreBase, AbstractCredentialStore):
    """SQLite implementation of the credential store, backed by `tenant_databases`."""

    _COLUMNS = (
        "id, tenant_id, backend_kind, encrypted_credentials, host, is_active, "
        "verification_status, last_verified_at, created_at, updated_at"
    )

    async def initialize(self) -> None:
        await get_sqlite_db_connection(self.db_path)
        logger.info("SQLiteCredentialStore initialized.")

    async def teardown(self) -> None:
        logger.info("SQLiteCredentialStore teardown (connection managed globally).")

    def _row_to_descriptor(self, row: Optional[sqlite3.Row]) -> Optional[TenantConnectionDescriptor]:
        if not row:
            return None
        try:
            return TenantConnectionDescriptor(
                id=row["id"],
                tenant_id=row["tenant_id"],
                backend_kind=BackendKind(row["backend_kind"]),
                encrypted_credentials=row["encrypted_credentials"],
                host=row["host"],
                is_active=bool(row["is_active"]),
                verification_status=VerificationStatus(row["verification_status"]),
                last_verified_at=_parse_timestamp(row["last_verified_at"]),
                created_at=_parse_timestamp(row["created_at"]),
                updated_at=_parse_timestamp(row["updated_at"])
            )
        except Exception as e:
            logger.error(f"Error converting row to TenantConnectionDescriptor: {e}", exc_info=True)
            return None

    async def get_descriptor(self, tenant_id: str) -> Optional[TenantConnectionDescriptor]:
        # Active first, then the most recently touched inactive row
        query = f"""
            SELECT {self._COLUMNS}
            FROM tenant_databases
            WHERE tenant_id = ?
            ORDER BY is_active DESC, updated_at DESC
            LIMIT 1
        """
        row = await self._fetchone(query, (tenant_id,))
        return self._row_to_descriptor(row)

    async def save_descriptor(
        self,
        tenant_id: str,
        backend_kind: BackendKind,
        encrypted_credentials: str,
        host: Optional[str] = None,
        verification_status: VerificationStatus = VerificationStatus.PENDING
    ) -> TenantConnectionDescriptor:
        now = datetime.now(timezone.utc)
        now_iso = now.isoformat()
        descriptor_id = str(uuid.uuid4())
        last_verified = now if verification_status != VerificationStatus.PENDING else None

        conn = await get_sqlite_db_connection(self.db_path)
        try:
            # Both statements commit together so a tenant never has two active rows
            conn.execute(
                "UPDATE tenant_databases SET is_active = 0, updated_at = ? "
                "WHERE tenant_id = ? AND is_active = 1",
                (now_iso, tenant_id)
            )
            conn.execute(
                f"INSERT INTO tenant_databases ({self._COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, 1, ?, ?, ?, ?)",
                (
                    descriptor_id,
                    tenant_id,
                    BackendKind(backend_kind).value,
                    encrypted_credentials,
                    host,
                    VerificationStatus(verification_status).value,
                    last_verified.isoformat() if last_verified else None,
                    now_iso,
                    now_iso
                )
            )
            conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Failed to save descriptor for tenant '{tenant_id}': {e}", exc_info=True)
            conn.rollback()
            raise

        logger.info(f"Saved {BackendKind(backend_kind).value} descriptor for tenant '{tenant_id}'.")
        return TenantConnectionDescriptor(
            id=descriptor_id,
            tenant_id=tenant_id,
            backend_kind=backend_kind,
            encrypted_credentials=encrypted_credentials,
            host=host,
            is_active=True,
            verification_status=verification_status,
            last_verified_at=last_verified,
            created_at=now,
            updated_at=now
        )

    async def deactivate(self, tenant_id: str) -> bool:
        query = (
            "UPDATE tenant_databases SET is_active = 0, updated_at = ? "
            "WHERE tenant_id = ? AND is_active = 1"
        )
        cursor = await self._execute_query(query, (datetime.now(timezone.utc).isoformat(), tenant_id))
        deactivated = cursor.rowcount > 0
        if deactivated:
            logger.info(f"Deactivated database descriptor for tenant '{tenant_id}'.")
        return deactivated

    async def record_verification(self, tenant_id: str, status: VerificationStatus) -> None:
        now_iso = datetime.now(timezone.utc).isoformat()
        query = (
            "UPDATE tenant_databases SET verification_status = ?, last_verified_at = ?, updated_at = ? "
            "WHERE tenant_id = ? AND is_active = 1"
        )
        await self._execute_query(query, (VerificationStatus(status).value, now_iso, now_iso, tenant_id))

    async def list_descriptors(
        self,
        active_only: bool = False,
        skip: int = 0,
        limit: int = 100
    ) -> List[TenantConnectionDescriptor]:
        where = "WHERE is_active = 1" if active_only else ""
        query = f"""
            SELECT {self._COLUMNS}
            FROM tenant_databases
            {where}
            ORDER BY created_at DESC
            LIMIT ? OFFSET ?
        """
        rows = await self._fetchall(query, (limit, skip))
        return [
            descriptor for row in rows
            if (descriptor := self._row_to_descriptor(row)) is not None
        ]


class SQLiteStoreRegistry(_SQLiteStoreBase, AbstractStoreRegistry):
    """SQLite implementation of the master store registry, backed by `platform_stores`."""

    _UPDATABLE_FIELDS = {"name", "slug", "custom_domain", "status"}

    async def initialize(self) -> None:
        await get_sqlite_db_connection(self.db_path)
        logger.info("SQLiteStoreRegistry initialized.")

    async def teardown(self) -> None:
        logger.info("SQLiteStoreRegistry teardown (connection managed globally).")

    def _row_to_store(self, row: Optional[sqlite3.Row]) -> Optional[PlatformStore]:
        if not row:
            return None
        return PlatformStore(
            tenant_id=row["tenant_id"],
            name=row["name"],
            slug=row["slug"],
            custom_domain=row["custom_domain"],
            status=row["status"],
            created_at=_parse_timestamp(row["created_at"])
        )

    async def get_store(self, tenant_id: str) -> Optional[PlatformStore]:
        row = await self._fetchone(
            "SELECT tenant_id, name, slug, custom_domain, status, created_at "
            "FROM platform_stores WHERE tenant_id = ?",
            (tenant_id,)
        )
        return self._row_to_store(row)

    async def register_store(self, store_create: PlatformStoreCreate) -> PlatformStore:
        existing = await self.get_store(store_create.tenant_id)
        if existing:
            return existing

        created_at = datetime.now(timezone.utc)
        await self._execute_query(
            "INSERT INTO platform_stores (tenant_id, name, slug, custom_domain, status, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (
                store_create.tenant_id,
                store_create.name,
                store_create.slug,
                store_create.custom_domain,
                store_create.status,
                created_at.isoformat()
            )
        )
        logger.info(f"Registered store '{store_create.tenant_id}' in the platform registry.")
        return PlatformStore(**store_create.model_dump(), created_at=created_at)

    async def update_store(self, tenant_id: str, **fields) -> Optional[PlatformStore]:
        current = await self.get_store(tenant_id)
        if not current:
            return None

        unknown = set(fields) - self._UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update platform store fields: {', '.join(sorted(unknown))}")
        if not fields:
            return current

        set_clauses = [f"{key} = ?" for key in fields]
        params = list(fields.values()) + [tenant_id]
        await self._execute_query(
            f"UPDATE platform_stores SET {', '.join(set_clauses)} WHERE tenant_id = ?",
            tuple(params)
        )
        return await self.get_store(tenant_id)

    async def list_stores(self, skip: int = 0, limit: int = 100) -> List[PlatformStore]:
        rows = await self._fetchall(
            "SELECT tenant_id, name, slug, custom_domain, status, created_at "
            "FROM platform_stores ORDER BY created_at DESC LIMIT ? OFFSET ?",
            (limit, skip)
        )
        return [store for row in rows if (store := self._row_to_store(row)) is not None]
