# tests/test_provisioning.py
import asyncio
import json
import logging

import httpx
import pytest

from tenant_plexus.credentials.models import PlatformStoreCreate
from tenant_plexus.errors import NotConfiguredError, QueryError
from tenant_plexus.health.models import HealthStatus
from tenant_plexus.provisioning.layouts import PageLayoutSource
from tenant_plexus.provisioning.management_api import ManagementApiClient
from tenant_plexus.provisioning.models import (
    DEFAULT_PAGE_TYPES,
    ManagementCredentials,
    ProvisioningChannel,
    ProvisioningOptions,
    ProvisioningState,
    ProvisioningStep,
)
from tenant_plexus.provisioning.schema_builder import SchemaBundle
from tenant_plexus.provisioning.service import TenantProvisioner, ensure_https, render_robots_txt

from conftest import SQLiteTestAdapter

logger = logging.getLogger(__name__)

TENANT = "7c9e6679-7425-40de-944b-e07fc1f90ae7"
OWNER = "9b2f4c1e-0d3a-4e5f-8a7b-6c5d4e3f2a1b"


def owner_options(**overrides) -> ProvisioningOptions:
    values = dict(
        store_name="Green Tea House",
        user_id=OWNER,
        user_email="owner@greentea.example",
        user_password_hash="$2b$10$hash",
    )
    values.update(overrides)
    return ProvisioningOptions(**values)


def row_counts(read_tenant_rows):
    return {
        table: read_tenant_rows(f"SELECT COUNT(*) AS n FROM {table}")[0]["n"]
        for table in ("stores", "users", "slot_configurations", "seo_settings", "languages", "categories")
    }


async def test_fresh_database_is_fully_provisioned(
    provisioner, register_tenant, tenant_db_path, read_tenant_rows, health_checker
):
    await register_tenant(TENANT, tenant_db_path)

    result = await provisioner.provision(TENANT, owner_options())
    logger.info(f"Provisioning result: {result.model_dump()}")

    assert result.success is True
    assert result.already_provisioned is False
    assert result.final_state == ProvisioningState.DONE
    assert result.channel == ProvisioningChannel.ADAPTER
    assert result.errors == []
    assert "stores" in result.tables_created and "slot_configurations" in result.tables_created
    assert result.data_seeded == ["stores", "seed_data", "users", "slot_configurations", "seo_settings"]

    store = read_tenant_rows("SELECT * FROM stores WHERE id = ?", (TENANT,))[0]
    assert store["name"] == "Green Tea House"
    assert store["slug"] == "green-tea-house"
    assert store["user_id"] == OWNER
    assert json.loads(store["settings"])["store_email"] == "owner@greentea.example"

    user = read_tenant_rows("SELECT * FROM users")[0]
    assert user["id"] == OWNER
    assert user["role"] == "admin"
    assert user["account_type"] == "agency"
    assert user["password"] == "$2b$10$hash"

    slots = read_tenant_rows("SELECT * FROM slot_configurations ORDER BY page_type, version_number")
    assert len(slots) == 2 * len(DEFAULT_PAGE_TYPES)
    assert {row["page_type"] for row in slots} == set(DEFAULT_PAGE_TYPES)
    published, draft = [row for row in slots if row["page_type"] == "cart"]
    assert (published["status"], published["version"]) == ("published", "1.0")
    assert (draft["status"], draft["version"]) == ("draft", "2.0")
    assert draft["parent_version_id"] == published["id"]
    assert published["published_at"] is not None

    seo = read_tenant_rows("SELECT * FROM seo_settings")[0]
    assert "Sitemap: https://shops.example.com/public/green-tea-house/sitemap.xml" in seo["robots_txt_content"]
    assert json.loads(seo["canonical_settings"])["base_url"] == "https://shops.example.com/public/green-tea-house"

    assert read_tenant_rows("SELECT slug FROM categories") == [{"slug": "root-catalog"}]

    report = await health_checker.check_health(TENANT)
    assert report.status == HealthStatus.HEALTHY


async def test_second_run_is_already_provisioned_without_duplicates(
    provisioner, register_tenant, tenant_db_path, read_tenant_rows
):
    await register_tenant(TENANT, tenant_db_path)
    await provisioner.provision(TENANT, owner_options())
    before = row_counts(read_tenant_rows)

    again = await provisioner.provision(TENANT, owner_options())

    assert again.success is True
    assert again.already_provisioned is True
    assert again.final_state == ProvisioningState.ALREADY_DONE
    assert again.errors == []
    assert row_counts(read_tenant_rows) == before


async def test_already_provisioned_run_restores_missing_defaults(
    provisioner, register_tenant, tenant_db_path, read_tenant_rows
):
    await register_tenant(TENANT, tenant_db_path)
    await provisioner.provision(TENANT, owner_options())
    adapter = await provisioner.resolver.resolve(TENANT)
    await adapter.delete("slot_configurations", {"page_type": "checkout"})
    await adapter.update("stores", {"settings": {"provisioned_at": "2026-01-01T00:00:00+00:00"}}, {"id": TENANT})

    result = await provisioner.provision(TENANT, owner_options())

    assert result.already_provisioned is True
    checkout = read_tenant_rows("SELECT status FROM slot_configurations WHERE page_type = 'checkout'")
    assert sorted(row["status"] for row in checkout) == ["draft", "published"]
    assert len(read_tenant_rows("SELECT id FROM slot_configurations")) == 2 * len(DEFAULT_PAGE_TYPES)
    assert "theme" in json.loads(read_tenant_rows("SELECT settings FROM stores")[0]["settings"])


async def test_concurrent_runs_for_one_tenant_do_not_duplicate(
    provisioner, register_tenant, tenant_db_path, read_tenant_rows
):
    await register_tenant(TENANT, tenant_db_path)

    first, second = await asyncio.gather(
        provisioner.provision(TENANT, owner_options()),
        provisioner.provision(TENANT, owner_options()),
    )

    assert first.success and second.success
    assert sorted([first.already_provisioned, second.already_provisioned]) == [False, True]
    assert row_counts(read_tenant_rows)["stores"] == 1
    assert row_counts(read_tenant_rows)["slot_configurations"] == 2 * len(DEFAULT_PAGE_TYPES)


async def test_theme_preset_merges_under_explicit_theme(
    provisioner, register_tenant, tenant_db_path, read_tenant_rows, theme_presets
):
    await theme_presets.save_preset("classic", {"primary_color": "#111111", "font": "Inter"}, is_system_default=True)
    await theme_presets.save_preset("bold", {"primary_color": "#ff0000", "font": "Archivo"})
    await register_tenant(TENANT, tenant_db_path)

    options = owner_options(settings={"theme": {"primary_color": "#00aa00"}, "show_stock": True})
    await provisioner.provision(TENANT, options)

    settings = json.loads(read_tenant_rows("SELECT settings FROM stores")[0]["settings"])
    assert settings["theme"] == {"primary_color": "#00aa00", "font": "Inter"}
    assert settings["show_stock"] is True


async def test_named_theme_preset_is_used(provisioner, register_tenant, tenant_db_path, read_tenant_rows, theme_presets):
    await theme_presets.save_preset("classic", {"font": "Inter"}, is_system_default=True)
    await theme_presets.save_preset("bold", {"font": "Archivo"})
    await register_tenant(TENANT, tenant_db_path)

    await provisioner.provision(TENANT, owner_options(theme_preset="bold"))

    settings = json.loads(read_tenant_rows("SELECT settings FROM stores")[0]["settings"])
    assert settings["theme"] == {"font": "Archivo"}


async def test_custom_domain_drives_sitemap_url(provisioner, register_tenant, tenant_db_path, read_tenant_rows):
    await register_tenant(TENANT, tenant_db_path)
    await provisioner.provision(TENANT, owner_options(custom_domain="shop.greentea.example/"))

    robots = read_tenant_rows("SELECT robots_txt_content FROM seo_settings")[0]["robots_txt_content"]
    assert "Sitemap: https://shop.greentea.example/sitemap.xml" in robots


async def test_store_identity_falls_back_to_platform_registry(
    provisioner, register_tenant, tenant_db_path, read_tenant_rows, store_registry
):
    await store_registry.register_store(PlatformStoreCreate(
        tenant_id=TENANT, name="Registry Name", slug="registry-slug", custom_domain="registry.example"
    ))
    await register_tenant(TENANT, tenant_db_path)

    await provisioner.provision(TENANT, ProvisioningOptions(user_id=OWNER))

    store = read_tenant_rows("SELECT name, slug FROM stores")[0]
    assert store == {"name": "Registry Name", "slug": "registry-slug"}
    robots = read_tenant_rows("SELECT robots_txt_content FROM seo_settings")[0]["robots_txt_content"]
    assert "Sitemap: https://registry.example/sitemap.xml" in robots


async def test_store_is_registered_in_platform_registry(provisioner, register_tenant, tenant_db_path, store_registry):
    await register_tenant(TENANT, tenant_db_path)
    await provisioner.provision(TENANT, owner_options())

    registered = await store_registry.get_store(TENANT)
    assert registered is not None
    assert registered.slug == "green-tea-house"


async def test_missing_owner_email_skips_admin_user(provisioner, register_tenant, tenant_db_path, read_tenant_rows):
    await register_tenant(TENANT, tenant_db_path)
    result = await provisioner.provision(TENANT, ProvisioningOptions(store_name="No Owner Shop"))

    assert result.success
    assert "users" not in result.data_seeded
    assert read_tenant_rows("SELECT * FROM users") == []
    # The generated store owner still owns the layouts
    assert len(read_tenant_rows("SELECT id FROM slot_configurations")) == 2 * len(DEFAULT_PAGE_TYPES)


class StoreInsertFailingAdapter(SQLiteTestAdapter):
    async def insert(self, table, rows):
        if table == "stores":
            raise QueryError("permission denied for table stores", code="42501", table=table)
        return await super().insert(table, rows)


async def test_store_creation_failure_is_not_fatal(provisioner, tenant_db_path, read_tenant_rows):
    adapter = StoreInsertFailingAdapter(tenant_db_path)
    result = await provisioner.provision(TENANT, owner_options(), adapter=adapter)
    await adapter.close()

    assert result.success is True
    assert result.final_state == ProvisioningState.DONE
    assert [e.step for e in result.errors] == [ProvisioningStep.CREATE_STORE.value]
    assert "permission denied" in result.errors[0].error
    assert "non-fatal" in result.message
    assert read_tenant_rows("SELECT * FROM stores") == []
    assert len(read_tenant_rows("SELECT id FROM users")) == 1
    assert len(read_tenant_rows("SELECT id FROM seo_settings")) == 1


async def test_schema_failure_is_fatal_and_skips_everything_after(
    resolver, test_settings, store_registry, tenant_db_path
):
    broken = SchemaBundle(
        tables_sql="CREATE TABLE IF NOT EXISTS stores (id TEXT PRIMARY KEY;",
        constraints_sql="",
        seed_sql="",
        table_names=["stores"],
    )
    provisioner = TenantProvisioner(resolver, test_settings, store_registry=store_registry, schema_bundle=broken)
    adapter = SQLiteTestAdapter(tenant_db_path)

    result = await provisioner.provision(TENANT, owner_options(), adapter=adapter)
    await adapter.close()

    assert result.success is False
    assert result.final_state == ProvisioningState.FAILED
    assert result.has_fatal_error
    assert result.errors[0].step == ProvisioningStep.MIGRATIONS.value
    assert result.errors[0].detail == {"phase": "tables"}
    assert result.tables_created == []
    assert adapter.inserted_tables == [], "No rows may be written after a schema failure"
    assert await store_registry.get_store(TENANT) is None


async def test_seed_failure_is_fatal(resolver, test_settings, sqlite_schema_bundle, tenant_db_path):
    sqlite_schema_bundle.seed_sql = "INSERT INTO no_such_table VALUES (1);"
    provisioner = TenantProvisioner(resolver, test_settings, schema_bundle=sqlite_schema_bundle)
    adapter = SQLiteTestAdapter(tenant_db_path)

    result = await provisioner.provision(TENANT, owner_options(), adapter=adapter)
    await adapter.close()

    assert result.success is False
    assert result.errors_for(ProvisioningStep.MIGRATIONS)[0].detail == {"phase": "seed"}
    assert "users" not in adapter.inserted_tables


async def test_run_after_failed_seed_applies_the_seed(
    resolver, test_settings, sqlite_schema_bundle, tenant_db_path, read_tenant_rows
):
    good_seed = sqlite_schema_bundle.seed_sql
    sqlite_schema_bundle.seed_sql = "INSERT INTO no_such_table VALUES (1);"
    provisioner = TenantProvisioner(resolver, test_settings, schema_bundle=sqlite_schema_bundle)
    adapter = SQLiteTestAdapter(tenant_db_path)

    failed = await provisioner.provision(TENANT, owner_options(), adapter=adapter)
    assert failed.success is False
    assert len(read_tenant_rows("SELECT id FROM stores")) == 1, "The store row is written before the seed"

    sqlite_schema_bundle.seed_sql = good_seed
    retried = await provisioner.provision(TENANT, owner_options(), adapter=adapter)
    await adapter.close()

    assert retried.success is True
    assert retried.already_provisioned is False, "A store row left by a failed seed must not count as provisioned"
    assert retried.final_state == ProvisioningState.DONE
    assert "seed_data" in retried.data_seeded
    assert read_tenant_rows("SELECT code FROM languages") == [{"code": "en"}]
    assert len(read_tenant_rows("SELECT id FROM users")) == 1
    assert "provisioned_at" in json.loads(read_tenant_rows("SELECT settings FROM stores")[0]["settings"])


async def test_finished_runs_release_their_tenant_lock(provisioner, register_tenant, tenant_db_path):
    await register_tenant(TENANT, tenant_db_path)

    await asyncio.gather(
        provisioner.provision(TENANT, owner_options()),
        provisioner.provision(TENANT, owner_options()),
    )
    await provisioner.provision("unknown-store", owner_options())

    assert provisioner._locks == {}
    assert provisioner._lock_holders == {}


async def test_constraint_failure_is_not_fatal(resolver, test_settings, sqlite_schema_bundle, tenant_db_path):
    sqlite_schema_bundle.constraints_sql = "ALTER TABLE nowhere ADD COLUMN x TEXT;"
    provisioner = TenantProvisioner(resolver, test_settings, schema_bundle=sqlite_schema_bundle)
    adapter = SQLiteTestAdapter(tenant_db_path)

    result = await provisioner.provision(TENANT, owner_options(), adapter=adapter)
    await adapter.close()

    assert result.success is True
    assert [e.step for e in result.errors] == [ProvisioningStep.FOREIGN_KEYS.value]


async def test_adapter_without_raw_sql_and_no_management_credentials_fails(provisioner, tenant_db_path):
    adapter = SQLiteTestAdapter(tenant_db_path, supports_raw_sql=False)
    result = await provisioner.provision(TENANT, owner_options(), adapter=adapter)
    await adapter.close()

    assert result.success is False
    assert result.errors[0].step == ProvisioningStep.MIGRATIONS.value
    assert "management API credentials" in result.errors[0].error


async def test_unconfigured_tenant_fails_without_raising(provisioner):
    result = await provisioner.provision("missing-store", owner_options())

    assert result.success is False
    assert result.final_state == ProvisioningState.FAILED
    assert result.errors[0].step == ProvisioningStep.GENERAL.value
    assert result.errors[0].detail == {"type": "NotConfiguredError"}


async def test_unknown_page_types_are_skipped(provisioner, register_tenant, tenant_db_path, read_tenant_rows):
    await register_tenant(TENANT, tenant_db_path)
    result = await provisioner.provision(TENANT, owner_options(page_types=["cart", "wishlist"]))

    assert result.success
    assert {row["page_type"] for row in read_tenant_rows("SELECT page_type FROM slot_configurations")} == {"cart"}


async def test_reprovision_forces_every_step_with_fresh_adapter(
    provisioner, register_tenant, tenant_db_path, adapter_factory, read_tenant_rows
):
    await register_tenant(TENANT, tenant_db_path)
    await provisioner.provision(TENANT, owner_options())
    cached = await provisioner.resolver.resolve(TENANT)

    result = await provisioner.reprovision(TENANT, owner_options())

    assert result.success is True
    assert result.already_provisioned is False
    assert result.final_state == ProvisioningState.DONE
    assert cached.closed, "Reprovisioning must evict the cached connection"
    assert adapter_factory.built[-1].closed, "The fresh adapter is closed once the run ends"
    assert row_counts(read_tenant_rows)["stores"] == 1


async def test_reprovision_of_unknown_tenant_reports_failure(provisioner):
    result = await provisioner.reprovision("missing-store")
    assert result.success is False
    assert result.errors[0].detail == {"type": "NotConfiguredError"}


async def test_update_store_name_updates_tenant_and_registry(
    provisioner, register_tenant, tenant_db_path, store_registry
):
    await register_tenant(TENANT, tenant_db_path)
    await provisioner.provision(TENANT, owner_options())

    row = await provisioner.update_store_name(TENANT, "Black Tea House")

    assert row["name"] == "Black Tea House"
    assert (await store_registry.get_store(TENANT)).name == "Black Tea House"


async def test_update_store_name_without_store_record(provisioner, register_tenant, tenant_db_path):
    await register_tenant(TENANT, tenant_db_path)
    adapter = await provisioner.resolver.resolve(TENANT)
    await adapter.execute_script(provisioner.schema_bundle.tables_sql)

    with pytest.raises(NotConfiguredError):
        await provisioner.update_store_name(TENANT, "Nobody")


async def test_management_channel_provisions_without_a_live_adapter(
    resolver, test_settings, store_registry
):
    queries = []
    state = {"tables_created": False}

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer sbp_secret"
        query = json.loads(request.content)["query"]
        queries.append(query)
        if "CREATE TABLE IF NOT EXISTS stores" in query:
            state["tables_created"] = True
        if query.startswith('SELECT "settings" FROM "stores"') and not state["tables_created"]:
            return httpx.Response(400, json={"message": 'ERROR:  42P01: relation "stores" does not exist'})
        return httpx.Response(201, json=[])

    provisioner = TenantProvisioner(
        resolver,
        test_settings,
        store_registry=store_registry,
        management_client=ManagementApiClient("https://management.example.com", transport=httpx.MockTransport(handler)),
    )
    options = owner_options(management=ManagementCredentials(access_token="sbp_secret", project_ref="proj123"))

    result = await provisioner.provision(TENANT, options)
    logger.info(f"Management API provisioning result: {result.model_dump()}")

    assert result.success is True, result.errors
    assert result.channel == ProvisioningChannel.MANAGEMENT_API
    assert result.errors == []

    def position(predicate):
        return next(index for index, query in enumerate(queries) if predicate(query))

    tables = position(lambda q: "CREATE TABLE IF NOT EXISTS stores" in q)
    constraints = position(lambda q: q.lstrip().startswith("-- Generated") and "ADD CONSTRAINT" in q)
    store_insert = position(lambda q: q.startswith('INSERT INTO "stores"'))
    seed = position(lambda q: "INSERT INTO languages" in q)
    user_insert = position(lambda q: q.startswith('INSERT INTO "users"'))
    assert tables < constraints < store_insert < seed < user_insert
    assert TENANT in queries[seed], "Seed placeholders must be substituted"
    assert "{{STORE_ID}}" not in queries[seed]


async def test_management_error_in_successful_response_fails_the_schema_step(resolver, test_settings):
    queries = []

    def handler(request: httpx.Request) -> httpx.Response:
        query = json.loads(request.content)["query"]
        queries.append(query)
        if "CREATE TABLE IF NOT EXISTS" in query:
            return httpx.Response(200, json={"error": "syntax error"})
        return httpx.Response(201, json=[])

    provisioner = TenantProvisioner(
        resolver,
        test_settings,
        management_client=ManagementApiClient("https://management.example.com", transport=httpx.MockTransport(handler)),
    )
    options = owner_options(management=ManagementCredentials(access_token="sbp_secret", project_ref="proj123"))

    result = await provisioner.provision(TENANT, options)

    assert result.success is False
    assert result.final_state == ProvisioningState.FAILED
    migration_errors = result.errors_for(ProvisioningStep.MIGRATIONS)
    assert migration_errors[0].detail == {"phase": "tables"}
    assert "syntax error" in migration_errors[0].error
    assert not any(q.startswith('INSERT INTO "stores"') for q in queries)


def test_robots_txt_and_url_helpers():
    robots = render_robots_txt("https://shop.example")
    assert robots.startswith("User-agent: *\n")
    assert "Disallow: /checkout/" in robots
    assert robots.rstrip().endswith("Sitemap: https://shop.example/sitemap.xml")

    assert ensure_https("shop.example/") == "https://shop.example"
    assert ensure_https("http://shop.example") == "http://shop.example"


def test_layout_configuration_structure():
    layouts = PageLayoutSource()
    configuration = layouts.build_configuration("cart", "2024-01-01T00:00:00+00:00")

    assert configuration["metadata"] == {
        "created": "2024-01-01T00:00:00+00:00",
        "lastModified": "2024-01-01T00:00:00+00:00",
        "source": "cart-config",
        "pageType": "cart",
    }
    assert configuration["slots"], "Packaged cart layout must define slots"
    for slot_id in configuration["rootSlots"]:
        assert not configuration["slots"][slot_id].get("parentId")
    assert layouts.build_configuration("wishlist", "2024-01-01T00:00:00+00:00") is None


def test_every_default_page_type_has_a_layout():
    layouts = PageLayoutSource()
    for page_type in DEFAULT_PAGE_TYPES:
        assert layouts.get_layout(page_type) is not None, f"No packaged layout for '{page_type}'"
