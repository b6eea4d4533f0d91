# tenant_plexus/adapters/base.py
import copy
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from ..credentials.models import BackendKind
from ..errors import QueryError

logger = logging.getLogger(__name__)

FILTER_OPERATORS = ("=", "!=", "<", "<=", ">", ">=", "like", "ilike", "in", "is", "is not")

_MISSING = object()


@dataclass(frozen=True)
class Filter:
    """A single column predicate. `in` takes a sequence; `is`/`is not` take None."""
    column: str
    op: str
    value: Any = None

    def __post_init__(self):
        if self.op not in FILTER_OPERATORS:
            raise ValueError(f"Unsupported filter operator '{self.op}'")


FilterSpec = Union[Mapping[str, Any], Sequence[Filter], None]


def normalize_filters(filters: FilterSpec) -> List[Filter]:
    """Accept either a list of Filter objects or a {column: value} equality mapping."""
    if not filters:
        return []
    if isinstance(filters, Mapping):
        return [
            Filter(column, "is", None) if value is None else Filter(column, "=", value)
            for column, value in filters.items()
        ]
    return list(filters)


class QueryBuilder:
    """
    Fluent, lazily executed SELECT against one table.

    Chaining methods only record state. Nothing touches the backend until
    `run()` or `first()` is awaited, the builder itself is awaited, or it is
    consumed with `async for`.
    """

    def __init__(self, adapter: "Adapter", table: str):
        self.adapter = adapter
        self.table = table
        self.columns: List[str] = []
        self.filters: List[Filter] = []
        self.ordering: List[Tuple[str, str]] = []
        self.limit_value: Optional[int] = None
        self.offset_value: Optional[int] = None

    def select(self, *columns: str) -> "QueryBuilder":
        self.columns.extend(columns)
        return self

    def where(self, column: str, op_or_value: Any, value: Any = _MISSING) -> "QueryBuilder":
        """
        Add a predicate. `where("slug", "demo")` means equality;
        `where("price", ">", 10)` uses the given operator.
        """
        if value is _MISSING:
            if op_or_value is None:
                self.filters.append(Filter(column, "is", None))
            else:
                self.filters.append(Filter(column, "=", op_or_value))
        else:
            self.filters.append(Filter(column, str(op_or_value).lower(), value))
        return self

    def where_in(self, column: str, values: Sequence[Any]) -> "QueryBuilder":
        self.filters.append(Filter(column, "in", tuple(values)))
        return self

    def where_null(self, column: str) -> "QueryBuilder":
        self.filters.append(Filter(column, "is", None))
        return self

    def where_not_null(self, column: str) -> "QueryBuilder":
        self.filters.append(Filter(column, "is not", None))
        return self

    def order_by(self, column: str, direction: str = "asc") -> "QueryBuilder":
        direction = direction.lower()
        if direction not in ("asc", "desc"):
            raise ValueError(f"Invalid sort direction '{direction}'")
        self.ordering.append((column, direction))
        return self

    def limit(self, count: int) -> "QueryBuilder":
        self.limit_value = count
        return self

    def offset(self, count: int) -> "QueryBuilder":
        self.offset_value = count
        return self

    async def run(self) -> List[Dict[str, Any]]:
        return await self.adapter._run_select(self)

    async def first(self) -> Optional[Dict[str, Any]]:
        single = copy.copy(self)
        single.limit_value = 1
        rows = await self.adapter._run_select(single)
        return rows[0] if rows else None

    def __await__(self):
        return self.run().__await__()

    async def __aiter__(self) -> AsyncIterator[Dict[str, Any]]:
        for row in await self.run():
            yield row

    def __repr__(self) -> str:
        return (
            f"QueryBuilder(table={self.table!r}, columns={self.columns!r}, "
            f"filters={self.filters!r}, ordering={self.ordering!r}, "
            f"limit={self.limit_value!r}, offset={self.offset_value!r})"
        )


class Adapter(ABC):
    """
    Uniform query interface over one tenant database.

    Every backend-specific failure is translated into a QueryError; driver
    exceptions never reach callers. Backends that cannot run arbitrary SQL
    set `supports_raw_sql = False` and raise UnsupportedOperationError from
    `execute_raw` and `execute_script`.
    """

    backend_kind: BackendKind
    supports_raw_sql: bool = True

    def __init__(self):
        self._closed = False
        self.last_error: Optional[str] = None

    @property
    def closed(self) -> bool:
        return self._closed

    def select_from(self, table: str) -> QueryBuilder:
        return QueryBuilder(self, table)

    @abstractmethod
    async def _run_select(self, query: QueryBuilder) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def insert(
        self,
        table: str,
        rows: Union[Dict[str, Any], Sequence[Dict[str, Any]]]
    ) -> List[Dict[str, Any]]:
        """Insert one or more rows and return them as stored."""
        pass

    @abstractmethod
    async def update(self, table: str, patch: Dict[str, Any], filters: FilterSpec) -> List[Dict[str, Any]]:
        """Apply `patch` to every row matching `filters` and return the updated rows."""
        pass

    @abstractmethod
    async def delete(self, table: str, filters: FilterSpec) -> bool:
        pass

    @abstractmethod
    async def execute_raw(self, statement: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        """Execute one backend-native statement and return any rows it produces."""
        pass

    @abstractmethod
    async def execute_script(self, script: str) -> None:
        """Execute a multi-statement SQL script."""
        pass

    async def test_connection(self, probe_table: str = "stores") -> bool:
        """
        Probe the backend with a one-row read of `probe_table`.

        A missing probe table still counts as reachable: a freshly created
        tenant database has no schema yet. Connection, TLS and auth failures
        return False and leave the diagnostic in `last_error`.
        """
        try:
            await self.select_from(probe_table).limit(1).run()
        except QueryError as e:
            if e.is_undefined_table:
                logger.debug(f"{self.backend_kind.value} probe table '{probe_table}' does not exist yet; backend reachable.")
                self.last_error = None
                return True
            self.last_error = str(e)
            logger.warning(f"{self.backend_kind.value} connection test failed: {e}")
            return False
        except Exception as e:
            self.last_error = str(e) or e.__class__.__name__
            logger.error(f"{self.backend_kind.value} connection test raised unexpectedly: {e}", exc_info=True)
            return False
        self.last_error = None
        return True

    async def close(self) -> None:
        """Release pooled connections or HTTP clients. Safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True
        try:
            await self._close()
        except Exception as e:
            logger.warning(f"Error while closing {self.backend_kind.value} adapter: {e}")

    @abstractmethod
    async def _close(self) -> None:
        pass

    @abstractmethod
    def describe(self) -> Dict[str, Any]:
        """Non-sensitive connection details for monitoring output."""
        pass

    @staticmethod
    def _as_rows(rows: Union[Dict[str, Any], Sequence[Dict[str, Any]]]) -> List[Dict[str, Any]]:
        if isinstance(rows, Mapping):
            return [dict(rows)]
        return [dict(row) for row in rows]
