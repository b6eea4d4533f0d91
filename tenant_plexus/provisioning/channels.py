# tenant_plexus/provisioning/channels.py
"""
Execution channels for provisioning.

A provisioning run talks to the tenant database through one of two
channels with the same surface: a live Adapter, or plain SQL text sent to
the remote management API. The provisioner never knows which one it has.
"""
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Union

from ..adapters import sql
from ..adapters.base import Adapter, FilterSpec, QueryBuilder, normalize_filters
from ..errors import ManagementApiError, QueryError, UnsupportedOperationError
from .management_api import ManagementApiClient
from .models import ManagementCredentials, ProvisioningChannel

logger = logging.getLogger(__name__)

Rows = Union[Dict[str, Any], Sequence[Dict[str, Any]]]

_UNDEFINED_TABLE_MESSAGE = re.compile(r"42P01|relation \S+ does not exist", re.IGNORECASE)
_UNIQUE_VIOLATION_MESSAGE = re.compile(r"23505|duplicate key value", re.IGNORECASE)


class ExecutionChannel(ABC):
    kind: ProvisioningChannel
    label: str

    @abstractmethod
    async def select(
        self,
        table: str,
        filters: FilterSpec = None,
        columns: Optional[Sequence[str]] = None,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def insert(self, table: str, rows: Rows, ignore_conflicts: bool = False) -> List[Dict[str, Any]]:
        """
        Insert rows. With `ignore_conflicts`, rows that collide with an existing
        unique key are skipped and the call still succeeds.
        """
        pass

    @abstractmethod
    async def update(self, table: str, patch: Dict[str, Any], filters: FilterSpec) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def apply_script(self, script: str, timeout: Optional[float] = None) -> None:
        pass


class ManagementApiChannel(ExecutionChannel):
    """Expresses every operation as SQL text and submits it to the management API."""

    kind = ProvisioningChannel.MANAGEMENT_API
    label = "management API"

    def __init__(
        self,
        client: ManagementApiClient,
        credentials: ManagementCredentials,
        statement_timeout: Optional[float] = None
    ):
        self.client = client
        self.credentials = credentials
        self.statement_timeout = statement_timeout

    async def _run(self, statement: str, timeout: Optional[float] = None, table: Optional[str] = None) -> Any:
        try:
            return await self.client.run_query(
                self.credentials.access_token.get_secret_value(),
                self.credentials.project_ref,
                statement,
                timeout=timeout or self.statement_timeout
            )
        except ManagementApiError as e:
            if table is None:
                raise
            raise self._as_query_error(e, table) from e

    @staticmethod
    def _as_query_error(error: ManagementApiError, table: str) -> QueryError:
        if _UNDEFINED_TABLE_MESSAGE.search(error.message):
            category = QueryError.UNDEFINED_TABLE
        elif _UNIQUE_VIOLATION_MESSAGE.search(error.message):
            category = QueryError.UNIQUE_VIOLATION
        elif error.status_code in (401, 403) or error.status_code is None:
            category = QueryError.CONNECTION
        else:
            category = QueryError.OTHER
        return QueryError(
            error.message,
            code=str(error.status_code) if error.status_code else None,
            category=category,
            details=error.payload,
            table=table
        )

    @staticmethod
    def _rows(response: Any) -> List[Dict[str, Any]]:
        if isinstance(response, list):
            return [row for row in response if isinstance(row, dict)]
        return []

    async def select(
        self,
        table: str,
        filters: FilterSpec = None,
        columns: Optional[Sequence[str]] = None,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        query = QueryBuilder(None, table)
        query.columns.extend(columns or [])
        query.filters.extend(normalize_filters(filters))
        query.limit_value = limit
        statement, _ = sql.compile_select(query, sql.POSTGRES_INLINE)
        return self._rows(await self._run(statement, table=table))

    async def insert(self, table: str, rows: Rows, ignore_conflicts: bool = False) -> List[Dict[str, Any]]:
        inserted: List[Dict[str, Any]] = []
        for statement, _ in sql.compile_insert(
            table, Adapter._as_rows(rows), sql.POSTGRES_INLINE,
            returning=True, on_conflict_do_nothing=ignore_conflicts
        ):
            inserted.extend(self._rows(await self._run(statement, table=table)))
        return inserted

    async def update(self, table: str, patch: Dict[str, Any], filters: FilterSpec) -> List[Dict[str, Any]]:
        statement, _ = sql.compile_update(
            table, patch, normalize_filters(filters), sql.POSTGRES_INLINE, returning=True
        )
        return self._rows(await self._run(statement, table=table))

    async def apply_script(self, script: str, timeout: Optional[float] = None) -> None:
        await self._run(script, timeout=timeout)


class AdapterChannel(ExecutionChannel):
    """
    Runs operations through a live Adapter.

    Scripts go through the adapter when it accepts raw SQL. Otherwise they
    are delegated to `script_channel` (a management API channel) when one
    was supplied, and rejected when not.
    """

    kind = ProvisioningChannel.ADAPTER
    label = "direct connection"

    def __init__(self, adapter: Adapter, script_channel: Optional[ManagementApiChannel] = None):
        self.adapter = adapter
        self.script_channel = script_channel

    async def select(
        self,
        table: str,
        filters: FilterSpec = None,
        columns: Optional[Sequence[str]] = None,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        query = self.adapter.select_from(table)
        if columns:
            query.select(*columns)
        query.filters.extend(normalize_filters(filters))
        if limit is not None:
            query.limit(limit)
        return await query.run()

    async def insert(self, table: str, rows: Rows, ignore_conflicts: bool = False) -> List[Dict[str, Any]]:
        if not ignore_conflicts:
            return await self.adapter.insert(table, rows)

        # Row by row so one existing row does not block the others
        inserted: List[Dict[str, Any]] = []
        for row in Adapter._as_rows(rows):
            try:
                inserted.extend(await self.adapter.insert(table, row))
            except QueryError as e:
                if not e.is_unique_violation:
                    raise
                logger.info(f"Row already exists in '{table}'; skipping insert.")
        return inserted

    async def update(self, table: str, patch: Dict[str, Any], filters: FilterSpec) -> List[Dict[str, Any]]:
        return await self.adapter.update(table, patch, filters)

    async def apply_script(self, script: str, timeout: Optional[float] = None) -> None:
        if self.adapter.supports_raw_sql:
            await self.adapter.execute_script(script)
            return
        if self.script_channel is not None:
            await self.script_channel.apply_script(script, timeout=timeout)
            return
        raise UnsupportedOperationError(
            f"The {self.adapter.backend_kind.value} adapter cannot execute SQL scripts; "
            "management API credentials are required to apply the schema."
        )

    @property
    def label_for_scripts(self) -> str:
        if self.adapter.supports_raw_sql or self.script_channel is None:
            return self.label
        return self.script_channel.label
