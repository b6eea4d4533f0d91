# tests/test_sql_compile.py
import logging
from datetime import datetime, timezone

import pytest

from tenant_plexus.adapters import sql
from tenant_plexus.adapters.base import Filter, QueryBuilder, normalize_filters
from tenant_plexus.errors import QueryError

logger = logging.getLogger(__name__)


class CountingAdapter:
    """Only what QueryBuilder needs from an adapter."""

    def __init__(self, rows):
        self.rows = rows
        self.executed = []

    async def _run_select(self, query):
        self.executed.append((query.table, query.limit_value))
        return list(self.rows)


async def test_query_builder_is_lazy_until_awaited():
    adapter = CountingAdapter([{"id": 1}, {"id": 2}])
    query = QueryBuilder(adapter, "products").where("store_id", "s1").order_by("name").limit(10)
    assert adapter.executed == [], "Building a query must not touch the backend"

    rows = await query
    assert rows == [{"id": 1}, {"id": 2}]
    assert adapter.executed == [("products", 10)]


async def test_query_builder_first_and_async_iteration():
    adapter = CountingAdapter([{"id": 1}])
    query = QueryBuilder(adapter, "stores").limit(50)

    assert await query.first() == {"id": 1}
    assert adapter.executed[-1] == ("stores", 1)
    assert query.limit_value == 50, "first() must not alter the original builder"

    collected = [row async for row in query]
    assert collected == [{"id": 1}]


def test_query_builder_rejects_bad_operator_and_direction():
    query = QueryBuilder(None, "products")
    with pytest.raises(ValueError):
        query.where("price", "~~", 3)
    with pytest.raises(ValueError):
        query.order_by("price", "sideways")


def test_compile_select_postgres_numbers_placeholders():
    query = (
        QueryBuilder(None, "products")
        .select("id", "name")
        .where("store_id", "s1")
        .where("price", ">=", 10)
        .where_in("sku", ["a", "b"])
        .where_null("deleted_at")
        .order_by("name", "desc")
        .limit(5)
        .offset(10)
    )
    statement, params = sql.compile_select(query, sql.POSTGRES)
    logger.info(statement)
    assert statement == (
        'SELECT "id", "name" FROM "products" WHERE "store_id" = $1 AND "price" >= $2 '
        'AND "sku" IN ($3, $4) AND "deleted_at" IS NULL ORDER BY "name" DESC LIMIT 5 OFFSET 10'
    )
    assert params == ["s1", 10, "a", "b"]


def test_compile_select_mysql_offset_without_limit_and_ilike():
    query = QueryBuilder(None, "customers").where("email", "ilike", "%@example.com").offset(20)
    statement, params = sql.compile_select(query, sql.MYSQL)
    assert statement == (
        "SELECT * FROM `customers` WHERE LOWER(`email`) LIKE LOWER(%s) "
        "LIMIT 18446744073709551615 OFFSET 20"
    )
    assert params == ["%@example.com"]


def test_empty_in_list_matches_nothing():
    query = QueryBuilder(None, "products").where_in("id", [])
    statement, params = sql.compile_select(query, sql.SQLITE)
    assert statement == 'SELECT * FROM "products" WHERE 1 = 0'
    assert params == []


def test_invalid_identifier_is_rejected():
    query = QueryBuilder(None, 'products"; DROP TABLE stores; --')
    with pytest.raises(QueryError) as exc_info:
        sql.compile_select(query, sql.POSTGRES)
    assert exc_info.value.code == "invalid_identifier"


def test_compile_insert_groups_rows_by_column_set():
    rows = [
        {"id": "1", "status": "published"},
        {"id": "2", "status": "published"},
        {"id": "3", "status": "draft", "parent_version_id": "1"},
    ]
    statements = sql.compile_insert("slot_configurations", rows, sql.POSTGRES, returning=True)
    assert len(statements) == 2
    first_sql, first_params = statements[0]
    assert first_sql == (
        'INSERT INTO "slot_configurations" ("id", "status") VALUES ($1, $2), ($3, $4) RETURNING *'
    )
    assert first_params == ["1", "published", "2", "published"]
    assert '"parent_version_id"' in statements[1][0]


def test_compile_insert_mysql_serializes_json_and_has_no_returning():
    statements = sql.compile_insert("stores", [{"id": "s1", "settings": {"theme": {}}}], sql.MYSQL, returning=True)
    statement, params = statements[0]
    assert statement == "INSERT INTO `stores` (`id`, `settings`) VALUES (%s, %s)"
    assert params == ["s1", '{"theme": {}}']


def test_compile_insert_rejects_on_conflict_where_unsupported():
    with pytest.raises(QueryError):
        sql.compile_insert("users", [{"id": "u1"}], sql.MYSQL, on_conflict_do_nothing=True)


def test_compile_insert_rejects_empty_row():
    with pytest.raises(QueryError):
        sql.compile_insert("users", [{}], sql.POSTGRES)


def test_inline_dialect_renders_escaped_literals():
    when = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    statement, params = sql.compile_update(
        "stores",
        {"name": "Bob's Shop", "is_active": True, "settings": {"a": 1}, "updated_at": when},
        normalize_filters({"id": "s1", "deleted_at": None}),
        sql.POSTGRES_INLINE,
        returning=True,
    )
    assert params == []
    assert statement == (
        "UPDATE \"stores\" SET \"name\" = 'Bob''s Shop', \"is_active\" = true, "
        "\"settings\" = '{\"a\": 1}', \"updated_at\" = '2024-05-01T12:00:00+00:00' "
        "WHERE \"id\" = 's1' AND \"deleted_at\" IS NULL RETURNING *"
    )


def test_render_literal_types():
    assert sql.render_literal(None) == "NULL"
    assert sql.render_literal(False) == "false"
    assert sql.render_literal(42) == "42"
    assert sql.render_literal("it's") == "'it''s'"


def test_compile_update_requires_patch():
    with pytest.raises(QueryError):
        sql.compile_update("stores", {}, [], sql.POSTGRES)


def test_compile_delete_with_filter_objects():
    statement, params = sql.compile_delete(
        "custom_domains", [Filter("store_id", "=", "s1"), Filter("domain", "!=", "x.com")], sql.SQLITE
    )
    assert statement == 'DELETE FROM "custom_domains" WHERE "store_id" = ? AND "domain" <> ?'
    assert params == ["s1", "x.com"]
