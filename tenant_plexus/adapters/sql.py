# tenant_plexus/adapters/sql.py
"""
SQL compilation for the direct-SQL adapters.

Builders and filter lists are turned into statements for a given dialect.
Identifiers are validated and quoted. Values travel as bound parameters,
except in the inline dialect used for plain-text SQL channels, where they
are rendered as escaped literals.
"""
import json
import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Sequence, Tuple
from uuid import UUID

from ..errors import QueryError
from .base import Filter, QueryBuilder

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

Statement = Tuple[str, List[Any]]


@dataclass(frozen=True)
class Dialect:
    name: str
    quote_char: str
    placeholder_style: str  # "numeric" ($1), "format" (%s), "qmark" (?) or "inline" (literals)
    native_ilike: bool = False
    supports_returning: bool = False
    supports_on_conflict: bool = False
    json_as_text: bool = True

    def placeholder(self, index: int) -> str:
        if self.placeholder_style == "numeric":
            return f"${index}"
        if self.placeholder_style == "format":
            return "%s"
        return "?"

    def quote(self, identifier: str) -> str:
        if identifier == "*":
            return identifier
        if not _IDENTIFIER.match(identifier):
            raise QueryError(f"Invalid SQL identifier '{identifier}'", code="invalid_identifier")
        return f"{self.quote_char}{identifier}{self.quote_char}"


POSTGRES = Dialect(
    "postgresql", '"', "numeric",
    native_ilike=True, supports_returning=True, supports_on_conflict=True, json_as_text=False
)
# Statements sent as plain text, e.g. over the management API, where nothing can be bound
POSTGRES_INLINE = Dialect(
    "postgresql", '"', "inline",
    native_ilike=True, supports_returning=True, supports_on_conflict=True
)
MYSQL = Dialect("mysql", "`", "format")
SQLITE = Dialect("sqlite", '"', "qmark", supports_returning=True, supports_on_conflict=True)


def render_literal(value: Any) -> str:
    """Render a Python value as a PostgreSQL literal."""
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, (dict, list)):
        text = json.dumps(value)
    elif isinstance(value, (datetime, date)):
        text = value.isoformat()
    elif isinstance(value, UUID):
        text = str(value)
    else:
        text = str(value)
    return "'" + text.replace("'", "''") + "'"


class _Params:
    """Collects bound values and hands out dialect placeholders in order."""

    def __init__(self, dialect: Dialect):
        self.dialect = dialect
        self.values: List[Any] = []

    def add(self, value: Any) -> str:
        if self.dialect.placeholder_style == "inline":
            return render_literal(value)
        if self.dialect.json_as_text and isinstance(value, (dict, list)):
            value = json.dumps(value)
        self.values.append(value)
        return self.dialect.placeholder(len(self.values))


def _compile_where(filters: Sequence[Filter], dialect: Dialect, params: _Params) -> str:
    if not filters:
        return ""
    clauses = []
    for f in filters:
        column = dialect.quote(f.column)
        if f.op == "is":
            clauses.append(f"{column} IS NULL")
        elif f.op == "is not":
            clauses.append(f"{column} IS NOT NULL")
        elif f.op == "in":
            values = list(f.value or ())
            if not values:
                clauses.append("1 = 0")
            else:
                placeholders = ", ".join(params.add(v) for v in values)
                clauses.append(f"{column} IN ({placeholders})")
        elif f.op == "ilike":
            if dialect.native_ilike:
                clauses.append(f"{column} ILIKE {params.add(f.value)}")
            else:
                clauses.append(f"LOWER({column}) LIKE LOWER({params.add(f.value)})")
        elif f.op == "like":
            clauses.append(f"{column} LIKE {params.add(f.value)}")
        elif f.op == "!=":
            clauses.append(f"{column} <> {params.add(f.value)}")
        else:
            clauses.append(f"{column} {f.op} {params.add(f.value)}")
    return " WHERE " + " AND ".join(clauses)


def compile_select(query: QueryBuilder, dialect: Dialect) -> Statement:
    params = _Params(dialect)
    columns = ", ".join(dialect.quote(c) for c in query.columns) if query.columns else "*"
    sql = f"SELECT {columns} FROM {dialect.quote(query.table)}"
    sql += _compile_where(query.filters, dialect, params)
    if query.ordering:
        sql += " ORDER BY " + ", ".join(
            f"{dialect.quote(column)} {direction.upper()}" for column, direction in query.ordering
        )
    if query.limit_value is not None:
        sql += f" LIMIT {int(query.limit_value)}"
    if query.offset_value is not None:
        if query.limit_value is None and dialect.name == "mysql":
            # MySQL has no OFFSET without LIMIT
            sql += " LIMIT 18446744073709551615"
        sql += f" OFFSET {int(query.offset_value)}"
    return sql, params.values


def compile_insert(
    table: str,
    rows: Sequence[Dict[str, Any]],
    dialect: Dialect,
    returning: bool = False,
    on_conflict_do_nothing: bool = False
) -> List[Statement]:
    """
    Compile an insert of several rows.

    Consecutive rows sharing the same column set are grouped into one
    multi-row statement so omitted columns keep their database defaults.
    """
    statements: List[Statement] = []
    group: List[Dict[str, Any]] = []

    def flush():
        if not group:
            return
        params = _Params(dialect)
        columns = list(group[0].keys())
        values_sql = ", ".join(
            "(" + ", ".join(params.add(row[c]) for c in columns) + ")" for row in group
        )
        sql = (
            f"INSERT INTO {dialect.quote(table)} "
            f"({', '.join(dialect.quote(c) for c in columns)}) VALUES {values_sql}"
        )
        if on_conflict_do_nothing:
            if not dialect.supports_on_conflict:
                raise QueryError(f"{dialect.name} does not support ON CONFLICT", code="unsupported", table=table)
            sql += " ON CONFLICT DO NOTHING"
        if returning and dialect.supports_returning:
            sql += " RETURNING *"
        statements.append((sql, params.values))
        group.clear()

    for row in rows:
        if not row:
            raise QueryError(f"Cannot insert an empty row into '{table}'", code="empty_row", table=table)
        if group and list(row.keys()) != list(group[0].keys()):
            flush()
        group.append(row)
    flush()
    return statements


def compile_update(
    table: str,
    patch: Dict[str, Any],
    filters: Sequence[Filter],
    dialect: Dialect,
    returning: bool = False
) -> Statement:
    if not patch:
        raise QueryError(f"Cannot update '{table}' with an empty patch", code="empty_patch", table=table)
    params = _Params(dialect)
    assignments = ", ".join(f"{dialect.quote(c)} = {params.add(v)}" for c, v in patch.items())
    sql = f"UPDATE {dialect.quote(table)} SET {assignments}"
    sql += _compile_where(filters, dialect, params)
    if returning and dialect.supports_returning:
        sql += " RETURNING *"
    return sql, params.values


def compile_delete(table: str, filters: Sequence[Filter], dialect: Dialect) -> Statement:
    params = _Params(dialect)
    sql = f"DELETE FROM {dialect.quote(table)}"
    sql += _compile_where(filters, dialect, params)
    return sql, params.values
