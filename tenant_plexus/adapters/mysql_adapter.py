# tenant_plexus/adapters/mysql_adapter.py
import asyncio
import logging
import ssl
from typing import Any, Dict, List, Optional, Sequence, Union

import aiomysql
import pymysql
from pymysql.constants import CLIENT

from ..credentials.models import BackendKind, SqlCredentials
from ..errors import QueryError
from . import sql
from .base import Adapter, Filter, FilterSpec, QueryBuilder, normalize_filters

logger = logging.getLogger(__name__)

DEFAULT_PORT = 3306

ER_NO_SUCH_TABLE = 1146
ER_DUP_ENTRY = 1062
ER_ACCESS_DENIED = 1045
ER_BAD_DB = 1049
CR_CONNECTION_ERROR = 2002
CR_CONN_HOST_ERROR = 2003
CR_UNKNOWN_HOST = 2005
CR_SERVER_GONE = 2006
CR_SERVER_LOST = 2013

_CONNECTION_ERRNOS = {
    ER_ACCESS_DENIED, ER_BAD_DB, CR_CONNECTION_ERROR, CR_CONN_HOST_ERROR,
    CR_UNKNOWN_HOST, CR_SERVER_GONE, CR_SERVER_LOST,
}


def _classify_errno(errno: Optional[int]) -> str:
    if errno == ER_NO_SUCH_TABLE:
        return QueryError.UNDEFINED_TABLE
    if errno == ER_DUP_ENTRY:
        return QueryError.UNIQUE_VIOLATION
    if errno in _CONNECTION_ERRNOS:
        return QueryError.CONNECTION
    return QueryError.OTHER


class MySQLAdapter(Adapter):
    """
    Direct MySQL adapter over an aiomysql pool.

    MySQL has no RETURNING clause, so insert and update read the affected
    rows back after writing them.
    """

    backend_kind = BackendKind.MYSQL

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
        self._pool: Optional[aiomysql.Pool] = None
        self._pool_lock = asyncio.Lock()

    def _ssl_context(self) -> Optional[ssl.SSLContext]:
        if not self._credentials.ssl:
            return None
        context = ssl.create_default_context()
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        return context

    async def _get_pool(self) -> aiomysql.Pool:
        if self._pool is not None:
            return self._pool
        async with self._pool_lock:
            if self._pool is None:
                logger.info(f"Creating MySQL pool for {self.host}:{self.port}/{self.database}")
                try:
                    self._pool = await aiomysql.create_pool(
                        host=self.host,
                        port=self.port,
                        user=self._credentials.username,
                        password=self._credentials.password,
                        db=self.database,
                        minsize=1,
                        maxsize=self._max_pool_size,
                        connect_timeout=self._connect_timeout,
                        autocommit=True,
                        charset="utf8mb4",
                        cursorclass=aiomysql.DictCursor,
                        client_flag=CLIENT.MULTI_STATEMENTS,
                        ssl=self._ssl_context()
                    )
                except Exception as e:
                    raise self._translate_error(e) from e
        return self._pool

    def _translate_error(self, exc: Exception, table: Optional[str] = None) -> QueryError:
        if isinstance(exc, QueryError):
            return exc
        if isinstance(exc, pymysql.err.MySQLError):
            errno = exc.args[0] if exc.args and isinstance(exc.args[0], int) else None
            message = exc.args[1] if len(exc.args) > 1 else str(exc)
            return QueryError(
                str(message),
                code=str(errno) if errno is not None else exc.__class__.__name__,
                category=_classify_errno(errno),
                table=table
            )
        if isinstance(exc, (OSError, asyncio.TimeoutError)):
            return QueryError(
                f"Could not connect to MySQL at {self.host}:{self.port}: {exc or exc.__class__.__name__}",
                code=exc.__class__.__name__,
                category=QueryError.CONNECTION,
                table=table
            )
        return QueryError(str(exc) or exc.__class__.__name__, code=exc.__class__.__name__, table=table)

    async def _execute(
        self,
        statement: str,
        params: Optional[Sequence[Any]] = None,
        table: Optional[str] = None,
        fetch: bool = True
    ) -> List[Dict[str, Any]]:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.cursor() as cursor:
                    await cursor.execute(statement, tuple(params) if params else None)
                    if not fetch:
                        return []
                    rows = await cursor.fetchall()
                    return [dict(row) for row in rows or []]
        except Exception as e:
            raise self._translate_error(e, table) from e

    async def _run_select(self, query: QueryBuilder) -> List[Dict[str, Any]]:
        statement, params = sql.compile_select(query, sql.MYSQL)
        return await self._execute(statement, params, query.table)

    async def _select_by_ids(self, table: str, ids: List[Any]) -> List[Dict[str, Any]]:
        if not ids:
            return []
        return await self.select_from(table).where_in("id", ids).run()

    async def insert(
        self,
        table: str,
        rows: Union[Dict[str, Any], Sequence[Dict[str, Any]]]
    ) -> List[Dict[str, Any]]:
        payload = self._as_rows(rows)
        inserted: List[Dict[str, Any]] = []
        offset = 0
        pool = await self._get_pool()
        for statement, params in sql.compile_insert(table, payload, sql.MYSQL):
            try:
                async with pool.acquire() as conn:
                    async with conn.cursor() as cursor:
                        await cursor.execute(statement, tuple(params))
                        last_id = cursor.lastrowid
                        row_count = cursor.rowcount
            except Exception as e:
                raise self._translate_error(e, table) from e

            group_rows = payload[offset:offset + max(row_count, 0)]
            offset += max(row_count, 0)
            if group_rows and all("id" in row for row in group_rows):
                inserted.extend(await self._select_by_ids(table, [row["id"] for row in group_rows]))
            elif last_id:
                # Auto-increment ids of a multi-row insert are consecutive from the first one
                inserted.extend(await self._select_by_ids(table, list(range(last_id, last_id + row_count))))
            else:
                inserted.extend(group_rows)
        return inserted

    async def update(self, table: str, patch: Dict[str, Any], filters: FilterSpec) -> List[Dict[str, Any]]:
        filter_list = normalize_filters(filters)
        matched = await self._filtered(table, filter_list).run()

        statement, params = sql.compile_update(table, patch, filter_list, sql.MYSQL)
        await self._execute(statement, params, table, fetch=False)

        if matched and all("id" in row for row in matched):
            return await self._select_by_ids(table, [row["id"] for row in matched])
        return [{**row, **patch} for row in matched]

    def _filtered(self, table: str, filters: List[Filter]) -> QueryBuilder:
        builder = self.select_from(table)
        builder.filters.extend(filters)
        return builder

    async def delete(self, table: str, filters: FilterSpec) -> bool:
        statement, params = sql.compile_delete(table, normalize_filters(filters), sql.MYSQL)
        await self._execute(statement, params, table, fetch=False)
        return True

    async def execute_raw(self, statement: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        return await self._execute(statement, params)

    async def execute_script(self, script: str) -> None:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.cursor() as cursor:
                    await cursor.execute(script)
                    # Drain every result set so later statement errors surface here
                    while await cursor.nextset():
                        pass
        except Exception as e:
            raise self._translate_error(e) from e

    async def _close(self) -> None:
        if self._pool is not None:
            self._pool.close()
            await self._pool.wait_closed()
            self._pool = None

    def describe(self) -> Dict[str, Any]:
        return {
            "backend_kind": self.backend_kind.value,
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "ssl": self._credentials.ssl,
        }
