# tenant_plexus/adapters/rest_adapter.py
import json
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union
from uuid import UUID

import httpx

from ..credentials.models import BackendKind, RestCredentials
from ..errors import QueryError, UnsupportedOperationError
from .base import Adapter, Filter, FilterSpec, QueryBuilder, normalize_filters

logger = logging.getLogger(__name__)

# PostgREST / PostgreSQL codes meaning "the table is not there"
UNDEFINED_TABLE_CODES = {"42P01", "PGRST205", "PGRST116"}
UNIQUE_VIOLATION_CODES = {"23505"}

_OPERATOR_MAP = {
    "=": "eq",
    "!=": "neq",
    "<": "lt",
    "<=": "lte",
    ">": "gt",
    ">=": "gte",
    "like": "like",
    "ilike": "ilike",
}

_RESERVED_IN_LIST = set(',()"')


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _format_in_value(value: Any) -> str:
    text = _format_value(value)
    if any(ch in _RESERVED_IN_LIST for ch in text):
        return '"' + text.replace('"', '\\"') + '"'
    return text


def encode_filters(filters: Sequence[Filter]) -> List[Tuple[str, str]]:
    """Translate filters into PostgREST query parameters."""
    params: List[Tuple[str, str]] = []
    for f in filters:
        if f.op == "is":
            params.append((f.column, "is.null"))
        elif f.op == "is not":
            params.append((f.column, "not.is.null"))
        elif f.op == "in":
            params.append((f.column, "in.(" + ",".join(_format_in_value(v) for v in (f.value or ())) + ")"))
        else:
            params.append((f.column, f"{_OPERATOR_MAP[f.op]}.{_format_value(f.value)}"))
    return params


class RestAdapter(Adapter):
    """
    Adapter for the REST-query managed backend (a PostgREST endpoint).

    The REST channel only exposes table operations, so raw statements and
    scripts are rejected with UnsupportedOperationError. Provisioning reaches
    such tenants through the management API instead.
    """

    backend_kind = BackendKind.SUPABASE
    supports_raw_sql = False

    def __init__(
        self,
        credentials: RestCredentials,
        timeout_seconds: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        super().__init__()
        self.project_url = credentials.project_url.rstrip("/")
        self.schema_name = credentials.schema_name

        headers = {
            "apikey": credentials.service_role_key,
            "Authorization": f"Bearer {credentials.service_role_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.schema_name:
            headers["Accept-Profile"] = self.schema_name
            headers["Content-Profile"] = self.schema_name

        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=f"{self.project_url}/rest/v1",
            headers=headers,
            timeout=timeout_seconds,
            transport=transport
        )

    async def _request(
        self,
        method: str,
        table: str,
        params: Optional[List[Tuple[str, str]]] = None,
        body: Any = None,
        prefer: Optional[str] = None
    ) -> httpx.Response:
        headers = {"Prefer": prefer} if prefer else None
        content = json.dumps(body, default=_json_default) if body is not None else None
        try:
            response = await self._client.request(
                method, f"/{table}", params=params, content=content, headers=headers
            )
        except httpx.TimeoutException as e:
            raise QueryError(
                f"Request to {self.project_url} timed out", code="timeout",
                category=QueryError.CONNECTION, table=table
            ) from e
        except httpx.HTTPError as e:
            raise QueryError(
                f"Could not reach {self.project_url}: {e}", code="transport_error",
                category=QueryError.CONNECTION, table=table
            ) from e

        if response.status_code >= 400:
            raise self._translate_error(response, table)
        return response

    def _translate_error(self, response: httpx.Response, table: str) -> QueryError:
        payload: Dict[str, Any] = {}
        try:
            decoded = response.json()
            if isinstance(decoded, dict):
                payload = decoded
        except ValueError:
            pass

        code = payload.get("code")
        message = payload.get("message") or response.text or f"HTTP {response.status_code}"

        missing_relation = response.status_code == 404 and bool(payload.get("message") or payload.get("error"))
        if code in UNDEFINED_TABLE_CODES or (missing_relation and not code):
            category = QueryError.UNDEFINED_TABLE
        elif code in UNIQUE_VIOLATION_CODES or response.status_code == 409:
            category = QueryError.UNIQUE_VIOLATION
        elif response.status_code in (401, 403) or (response.status_code == 404 and not payload):
            # A 404 without an error body means the URL is not a data API at all
            category = QueryError.CONNECTION
        else:
            category = QueryError.OTHER

        return QueryError(
            message,
            code=str(code) if code else str(response.status_code),
            category=category,
            details={"details": payload.get("details"), "hint": payload.get("hint"), "status": response.status_code},
            table=table
        )

    async def _run_select(self, query: QueryBuilder) -> List[Dict[str, Any]]:
        params: List[Tuple[str, str]] = [("select", ",".join(query.columns) if query.columns else "*")]
        params.extend(encode_filters(query.filters))
        if query.ordering:
            params.append(("order", ",".join(f"{column}.{direction}" for column, direction in query.ordering)))
        if query.limit_value is not None:
            params.append(("limit", str(int(query.limit_value))))
        if query.offset_value is not None:
            params.append(("offset", str(int(query.offset_value))))

        response = await self._request("GET", query.table, params=params)
        return response.json()

    async def insert(
        self,
        table: str,
        rows: Union[Dict[str, Any], Sequence[Dict[str, Any]]]
    ) -> List[Dict[str, Any]]:
        payload = self._as_rows(rows)
        if not payload:
            return []
        response = await self._request("POST", table, body=payload, prefer="return=representation")
        return response.json()

    async def update(self, table: str, patch: Dict[str, Any], filters: FilterSpec) -> List[Dict[str, Any]]:
        response = await self._request(
            "PATCH", table,
            params=encode_filters(normalize_filters(filters)),
            body=patch,
            prefer="return=representation"
        )
        return response.json()

    async def delete(self, table: str, filters: FilterSpec) -> bool:
        await self._request("DELETE", table, params=encode_filters(normalize_filters(filters)))
        return True

    async def execute_raw(self, statement: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        raise UnsupportedOperationError(
            "Raw SQL is not available over the REST query interface. "
            "Use the table operations or the management API."
        )

    async def execute_script(self, script: str) -> None:
        raise UnsupportedOperationError(
            "SQL scripts cannot be executed over the REST query interface. "
            "Use the management API."
        )

    async def _close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def describe(self) -> Dict[str, Any]:
        return {
            "backend_kind": self.backend_kind.value,
            "project_url": self.project_url,
            "schema": self.schema_name,
        }
