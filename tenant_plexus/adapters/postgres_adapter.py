# tenant_plexus/adapters/postgres_adapter.py
import asyncio
import json
import logging
import ssl
from typing import Any, Dict, List, Optional, Sequence, Union

import asyncpg

from ..credentials.models import BackendKind, SqlCredentials
from ..errors import QueryError
from . import sql
from .base import Adapter, FilterSpec, QueryBuilder, normalize_filters

logger = logging.getLogger(__name__)

DEFAULT_PORT = 5432


def _classify_sqlstate(sqlstate: Optional[str]) -> str:
    if not sqlstate:
        return QueryError.OTHER
    if sqlstate == "42P01":
        return QueryError.UNDEFINED_TABLE
    if sqlstate == "23505":
        return QueryError.UNIQUE_VIOLATION
    # Class 08: connection exception, class 28: invalid authorization, 3D000: unknown database
    if sqlstate.startswith("08") or sqlstate.startswith("28") or sqlstate == "3D000":
        return QueryError.CONNECTION
    return QueryError.OTHER


class PostgresAdapter(Adapter):
    """Direct PostgreSQL adapter over an asyncpg connection pool."""

    backend_kind = BackendKind.POSTGRESQL

    def __init__(
        self,
        credentials: SqlCredentials,
        max_pool_size: int = 10,
        connect_timeout: float = 10.0
    ):
        super().__init__()
        self.host = credentials.host
        self.port = credentials.port or DEFAULT_PORT
        self.database = credentials.database
        self._credentials = credentials
        self._max_pool_size = credentials.max_connections or max_pool_size
        self._connect_timeout = connect_timeout
        self._pool: Optional[asyncpg.Pool] = None
        self._pool_lock = asyncio.Lock()

    def _ssl_context(self) -> Optional[ssl.SSLContext]:
        if not self._credentials.ssl:
            return None
        # Managed providers commonly present certificates not in the local trust store
        context = ssl.create_default_context()
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        return context

    @staticmethod
    async def _init_connection(conn) -> None:
        for type_name in ("json", "jsonb"):
            await conn.set_type_codec(
                type_name, encoder=json.dumps, decoder=json.loads, schema="pg_catalog"
            )

    async def _get_pool(self) -> asyncpg.Pool:
        if self._pool is not None:
            return self._pool
        async with self._pool_lock:
            if self._pool is None:
                logger.info(f"Creating PostgreSQL pool for {self.host}:{self.port}/{self.database}")
                try:
                    self._pool = await asyncpg.create_pool(
                        host=self.host,
                        port=self.port,
                        user=self._credentials.username,
                        password=self._credentials.password,
                        database=self.database,
                        ssl=self._ssl_context(),
                        min_size=1,
                        max_size=self._max_pool_size,
                        timeout=self._connect_timeout,
                        init=self._init_connection
                    )
                except Exception as e:
                    raise self._translate_error(e) from e
        return self._pool

    def _translate_error(self, exc: Exception, table: Optional[str] = None) -> QueryError:
        if isinstance(exc, QueryError):
            return exc
        if isinstance(exc, asyncpg.PostgresError):
            sqlstate = getattr(exc, "sqlstate", None)
            return QueryError(
                str(exc) or exc.__class__.__name__,
                code=sqlstate,
                category=_classify_sqlstate(sqlstate),
                details={"detail": getattr(exc, "detail", None), "hint": getattr(exc, "hint", None)},
                table=table
            )
        if isinstance(exc, (OSError, asyncio.TimeoutError, asyncpg.InterfaceError)):
            return QueryError(
                f"Could not connect to PostgreSQL at {self.host}:{self.port}: {exc or exc.__class__.__name__}",
                code=exc.__class__.__name__,
                category=QueryError.CONNECTION,
                table=table
            )
        return QueryError(str(exc) or exc.__class__.__name__, code=exc.__class__.__name__, table=table)

    async def _fetch(self, statement: str, params: Sequence[Any], table: Optional[str] = None) -> List[Dict[str, Any]]:
        pool = await self._get_pool()
        try:
            records = await pool.fetch(statement, *params)
        except Exception as e:
            raise self._translate_error(e, table) from e
        return [dict(record) for record in records]

    async def _run_select(self, query: QueryBuilder) -> List[Dict[str, Any]]:
        statement, params = sql.compile_select(query, sql.POSTGRES)
        return await self._fetch(statement, params, query.table)

    async def insert(
        self,
        table: str,
        rows: Union[Dict[str, Any], Sequence[Dict[str, Any]]]
    ) -> List[Dict[str, Any]]:
        inserted: List[Dict[str, Any]] = []
        for statement, params in sql.compile_insert(table, self._as_rows(rows), sql.POSTGRES, returning=True):
            inserted.extend(await self._fetch(statement, params, table))
        return inserted

    async def update(self, table: str, patch: Dict[str, Any], filters: FilterSpec) -> List[Dict[str, Any]]:
        statement, params = sql.compile_update(
            table, patch, normalize_filters(filters), sql.POSTGRES, returning=True
        )
        return await self._fetch(statement, params, table)

    async def delete(self, table: str, filters: FilterSpec) -> bool:
        statement, params = sql.compile_delete(table, normalize_filters(filters), sql.POSTGRES)
        pool = await self._get_pool()
        try:
            await pool.execute(statement, *params)
        except Exception as e:
            raise self._translate_error(e, table) from e
        return True

    async def execute_raw(self, statement: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        return await self._fetch(statement, list(params or []))

    async def execute_script(self, script: str) -> None:
        pool = await self._get_pool()
        try:
            # Without arguments asyncpg uses the simple query protocol, which accepts many statements
            await pool.execute(script)
        except Exception as e:
            raise self._translate_error(e) from e

    async def _close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    def describe(self) -> Dict[str, Any]:
        return {
            "backend_kind": self.backend_kind.value,
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "ssl": self._credentials.ssl,
        }
