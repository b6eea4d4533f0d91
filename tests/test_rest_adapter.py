# tests/test_rest_adapter.py
import json
import logging
from datetime import datetime, timezone

import httpx
import pytest

from tenant_plexus.adapters.rest_adapter import RestAdapter
from tenant_plexus.credentials.models import RestCredentials
from tenant_plexus.errors import QueryError, UnsupportedOperationError

logger = logging.getLogger(__name__)

PROJECT_URL = "https://abcd1234.example.co"


def make_adapter(handler, schema=None) -> RestAdapter:
    credentials = RestCredentials(project_url=PROJECT_URL, service_role_key="service-key", schema=schema)
    return RestAdapter(credentials, transport=httpx.MockTransport(handler))


async def test_select_encodes_filters_ordering_and_paging():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[{"id": "p1", "name": "Tea"}])

    adapter = make_adapter(handler)
    rows = await (
        adapter.select_from("products")
        .select("id", "name")
        .where("price", ">", 10)
        .where_in("sku", ["a,1", "b"])
        .where_null("deleted_at")
        .order_by("name", "desc")
        .limit(5)
        .offset(10)
    )
    await adapter.close()

    assert rows == [{"id": "p1", "name": "Tea"}]
    request = seen[0]
    assert request.method == "GET"
    assert request.url.path == "/rest/v1/products"
    params = request.url.params
    assert params["select"] == "id,name"
    assert params["price"] == "gt.10"
    assert params["sku"] == 'in.("a,1",b)'
    assert params["deleted_at"] == "is.null"
    assert params["order"] == "name.desc"
    assert params["limit"] == "5"
    assert params["offset"] == "10"
    assert request.headers["apikey"] == "service-key"
    assert request.headers["Authorization"] == "Bearer service-key"


async def test_schema_profile_headers_sent_when_configured():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=[])

    adapter = make_adapter(handler, schema="tenant_42")
    await adapter.select_from("stores").limit(1).run()
    await adapter.close()
    assert seen[0].headers["Accept-Profile"] == "tenant_42"
    assert seen[0].headers["Content-Profile"] == "tenant_42"


async def test_insert_posts_json_and_asks_for_representation():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(201, json=json.loads(request.content))

    adapter = make_adapter(handler)
    when = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    rows = await adapter.insert("stores", {"id": "s1", "created_at": when, "settings": {"theme": {}}})
    await adapter.close()

    assert seen[0].method == "POST"
    assert seen[0].headers["Prefer"] == "return=representation"
    assert rows == [{"id": "s1", "created_at": when.isoformat(), "settings": {"theme": {}}}]


async def test_update_uses_patch_with_filters():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=[{"id": "s1", "name": "Renamed"}])

    adapter = make_adapter(handler)
    rows = await adapter.update("stores", {"name": "Renamed"}, {"id": "s1"})
    await adapter.close()
    assert seen[0].method == "PATCH"
    assert seen[0].url.params["id"] == "eq.s1"
    assert rows[0]["name"] == "Renamed"


async def test_missing_probe_table_counts_as_reachable():
    def handler(request):
        return httpx.Response(404, json={
            "code": "42P01", "message": 'relation "public.stores" does not exist'
        })

    adapter = make_adapter(handler)
    assert await adapter.test_connection("stores") is True
    assert adapter.last_error is None
    await adapter.close()


async def test_schema_cache_miss_counts_as_reachable():
    def handler(request):
        return httpx.Response(404, json={
            "code": "PGRST205", "message": "Could not find the table 'public.stores' in the schema cache"
        })

    adapter = make_adapter(handler)
    assert await adapter.test_connection() is True
    await adapter.close()


async def test_auth_failure_fails_probe_with_diagnostic():
    def handler(request):
        return httpx.Response(401, json={"message": "Invalid API key"})

    adapter = make_adapter(handler)
    assert await adapter.test_connection() is False
    assert "Invalid API key" in adapter.last_error
    await adapter.close()


async def test_transport_failure_fails_probe():
    def handler(request):
        raise httpx.ConnectError("Name or service not known", request=request)

    adapter = make_adapter(handler)
    assert await adapter.test_connection() is False
    assert adapter.last_error
    await adapter.close()


async def test_bare_not_found_fails_probe():
    def handler(request):
        return httpx.Response(404, text="<html><body>Not Found</body></html>")

    adapter = make_adapter(handler)
    assert await adapter.test_connection() is False, "A wrong project URL must not pass as an empty database"
    assert "Not Found" in adapter.last_error
    await adapter.close()


async def test_not_found_with_error_body_counts_as_missing_table():
    def handler(request):
        return httpx.Response(404, json={"message": 'relation "public.stores" does not exist'})

    adapter = make_adapter(handler)
    with pytest.raises(QueryError) as exc_info:
        await adapter.select_from("stores").run()
    assert exc_info.value.is_undefined_table
    assert await adapter.test_connection() is True
    await adapter.close()


async def test_duplicate_insert_is_classified_as_unique_violation():
    def handler(request):
        return httpx.Response(409, json={
            "code": "23505", "message": 'duplicate key value violates unique constraint "users_email_key"'
        })

    adapter = make_adapter(handler)
    with pytest.raises(QueryError) as exc_info:
        await adapter.insert("users", {"email": "a@example.com"})
    await adapter.close()

    error = exc_info.value
    assert error.is_unique_violation
    assert error.code == "23505"
    assert error.table == "users"


async def test_raw_sql_and_scripts_are_unsupported():
    adapter = make_adapter(lambda request: httpx.Response(200, json=[]))
    assert adapter.supports_raw_sql is False
    with pytest.raises(UnsupportedOperationError):
        await adapter.execute_raw("SELECT 1")
    with pytest.raises(UnsupportedOperationError):
        await adapter.execute_script("CREATE TABLE x (id int);")
    await adapter.close()


async def test_close_is_idempotent():
    adapter = make_adapter(lambda request: httpx.Response(200, json=[]))
    await adapter.close()
    await adapter.close()
    assert adapter.closed
    assert adapter.describe()["project_url"] == PROJECT_URL
