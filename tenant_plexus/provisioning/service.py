# tenant_plexus/provisioning/service.py
import asyncio
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..adapters.base import Adapter
from ..connections.resolver import ConnectionResolver
from ..credentials.models import PlatformStoreCreate
from ..credentials.storage_interfaces import AbstractStoreRegistry
from ..errors import NotConfiguredError, TenantPlexusError
from ..settings import Settings
from ..utils.slugs import generate_slug
from .channels import AdapterChannel, ExecutionChannel, ManagementApiChannel
from .layouts import PageLayoutSource
from .management_api import ManagementApiClient
from .models import (
    DEFAULT_PAGE_TYPES,
    ProvisioningOptions,
    ProvisioningResult,
    ProvisioningState,
    ProvisioningStep,
)
from .schema_builder import SchemaBundle
from .theme_presets import AbstractThemePresetSource

logger = logging.getLogger(__name__)

DEFAULT_STORE_NAME = "My Store"

# Key in stores.settings, written only once a run reaches DONE
PROVISIONED_MARKER = "provisioned_at"

ROBOTS_ALLOW = ["/", "/products/", "/categories/", "/cms-pages/"]
ROBOTS_DISALLOW = ["/admin/", "/api/", "/checkout/", "/cart/", "/account/", "/login"]


@dataclass
class _StoreIdentity:
    name: str
    slug: str
    registered_domain: Optional[str] = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_dict(value: Any) -> Dict[str, Any]:
    """JSON columns come back as dicts from most drivers and as text from MySQL."""
    if isinstance(value, dict):
        return value
    if isinstance(value, (str, bytes)) and value:
        try:
            decoded = json.loads(value)
        except ValueError:
            return {}
        return decoded if isinstance(decoded, dict) else {}
    return {}


def ensure_https(domain: str) -> str:
    domain = domain.strip().rstrip("/")
    if domain.startswith(("http://", "https://")):
        return domain
    return f"https://{domain}"


def render_robots_txt(base_url: str) -> str:
    """Default crawler directives for a storefront, pointing at its sitemap."""
    lines = ["User-agent: *"]
    lines += [f"Allow: {path}" for path in ROBOTS_ALLOW]
    lines.append("")
    lines += [f"Disallow: {path}" for path in ROBOTS_DISALLOW]
    lines.append("")
    lines.append(f"Sitemap: {base_url}/sitemap.xml")
    return "\n".join(lines) + "\n"


class TenantProvisioner:
    """
    Brings a tenant database from an empty schema to a minimally usable store.

    A run walks the state machine START -> CHECK_PROVISIONED -> either
    ALREADY_DONE, or RUN_SCHEMA -> RUN_SEED -> CREATE_BOOTSTRAP_ROWS ->
    SEED_DEFAULTS -> DONE. Schema and seed failures are fatal and end the run
    in FAILED. Every other step records a StepError and the run continues.

    Work goes through a live adapter when one is available, or as SQL text
    through the remote management API when only a project token is.
    """

    def __init__(
        self,
        resolver: ConnectionResolver,
        settings: Settings,
        store_registry: Optional[AbstractStoreRegistry] = None,
        theme_presets: Optional[AbstractThemePresetSource] = None,
        layouts: Optional[PageLayoutSource] = None,
        schema_bundle: Optional[SchemaBundle] = None,
        management_client: Optional[ManagementApiClient] = None
    ):
        self.resolver = resolver
        self.settings = settings
        self.store_registry = store_registry
        self.theme_presets = theme_presets
        self.layouts = layouts or PageLayoutSource()
        self.schema_bundle = schema_bundle or SchemaBundle.load()
        self.management_client = management_client or ManagementApiClient(
            settings.management_api_base_url,
            default_timeout=settings.management_api_default_timeout_seconds,
            max_batch_bytes=settings.management_api_max_batch_bytes
        )
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_holders: Dict[str, int] = {}

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def provision(
        self,
        tenant_id: str,
        options: Optional[ProvisioningOptions] = None,
        adapter: Optional[Adapter] = None
    ) -> ProvisioningResult:
        """
        Provision a tenant database. Never raises.

        Args:
            tenant_id: Store identifier; also the id of the tenant's store row
            options: Store details, bootstrap user, theme and channel options
            adapter: Live adapter to use instead of resolving one. When neither
                this nor a resolvable descriptor exists, `options.management`
                must carry management API credentials.

        Returns:
            ProvisioningResult with per-step errors. `success` is False only when
            the channel could not be opened or schema/seed application failed.
        """
        options = options or ProvisioningOptions()
        result = ProvisioningResult(tenant_id=tenant_id)

        lock = self._locks.setdefault(tenant_id, asyncio.Lock())
        if lock.locked():
            logger.info(f"Provisioning for store {tenant_id} already running; waiting for it to finish.")

        self._lock_holders[tenant_id] = self._lock_holders.get(tenant_id, 0) + 1
        try:
            async with lock:
                await self._provision_locked(tenant_id, options, adapter, result)
        finally:
            self._lock_holders[tenant_id] -= 1
            if not self._lock_holders[tenant_id]:
                del self._lock_holders[tenant_id]
                self._locks.pop(tenant_id, None)
        return result

    async def reprovision(
        self,
        tenant_id: str,
        options: Optional[ProvisioningOptions] = None
    ) -> ProvisioningResult:
        """
        Clear the tenant's cached connection and run every step again with a
        freshly resolved adapter. Never raises.
        """
        options = (options or ProvisioningOptions()).model_copy(update={"force": True})
        await self.resolver.clear_cache(tenant_id)

        try:
            adapter = await self.resolver.resolve(tenant_id, use_cache=False)
        except TenantPlexusError as e:
            logger.error(f"Cannot reprovision store {tenant_id}: {e.message}")
            result = ProvisioningResult(tenant_id=tenant_id)
            result.add_error(ProvisioningStep.GENERAL, e.message, {"type": e.__class__.__name__})
            self._fail(result, f"Reprovisioning failed: {e.message}")
            return result

        try:
            return await self.provision(tenant_id, options, adapter=adapter)
        finally:
            await adapter.close()

    async def update_store_name(self, tenant_id: str, name: str) -> Dict[str, Any]:
        """
        Rename the tenant's store record and keep the platform registry in step.

        Raises:
            NotConfiguredError: The tenant database has no store record
            TenantPlexusError: Resolver or query failures
        """
        adapter = await self.resolver.resolve(tenant_id)
        rows = await adapter.update("stores", {"name": name, "updated_at": _now()}, {"id": tenant_id})
        if not rows:
            raise NotConfiguredError(tenant_id, f"Store record for {tenant_id} not found in tenant database")

        if self.store_registry is not None:
            await self.store_registry.update_store(tenant_id, name=name)
        logger.info(f"Renamed store {tenant_id} to '{name}'")
        return rows[0]

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    async def _provision_locked(
        self,
        tenant_id: str,
        options: ProvisioningOptions,
        adapter: Optional[Adapter],
        result: ProvisioningResult
    ) -> None:
        try:
            channel = await self._open_channel(tenant_id, options, adapter)
        except TenantPlexusError as e:
            logger.error(f"Cannot provision store {tenant_id}: {e.message}")
            result.add_error(ProvisioningStep.GENERAL, e.message, {"type": e.__class__.__name__})
            self._fail(result, f"Provisioning failed: {e.message}")
            return

        result.channel = channel.kind
        logger.info(f"Provisioning store {tenant_id} through {channel.label}")
        try:
            await self._run(channel, tenant_id, options, result)
        except Exception as e:
            logger.error(f"Unexpected error while provisioning store {tenant_id}: {e}", exc_info=True)
            result.add_error(ProvisioningStep.GENERAL, str(e))
            self._fail(result, f"Provisioning failed: {e}")

    async def _open_channel(
        self,
        tenant_id: str,
        options: ProvisioningOptions,
        adapter: Optional[Adapter]
    ) -> ExecutionChannel:
        management_channel = None
        if options.management is not None:
            management_channel = ManagementApiChannel(
                self.management_client,
                options.management,
                statement_timeout=self.settings.management_api_default_timeout_seconds
            )

        if adapter is None and management_channel is not None:
            return management_channel
        if adapter is None:
            adapter = await self.resolver.resolve(tenant_id)
        return AdapterChannel(adapter, script_channel=management_channel)

    def _transition(self, result: ProvisioningResult, state: ProvisioningState) -> None:
        logger.info(f"Store {result.tenant_id}: {result.final_state.value} -> {state.value}")
        result.final_state = state

    def _fail(self, result: ProvisioningResult, message: str) -> None:
        self._transition(result, ProvisioningState.FAILED)
        result.success = False
        result.message = message

    async def _run(
        self,
        channel: ExecutionChannel,
        tenant_id: str,
        options: ProvisioningOptions,
        result: ProvisioningResult
    ) -> None:
        identity = await self._store_identity(tenant_id, options)

        self._transition(result, ProvisioningState.CHECK_PROVISIONED)
        if not options.force and await self._is_provisioned(channel, tenant_id):
            self._transition(result, ProvisioningState.ALREADY_DONE)
            result.already_provisioned = True
            store = await self._ensure_store_record(channel, tenant_id, identity, options, result)
            await self._seed_slot_configurations(channel, tenant_id, options, store, result)
            result.success = True
            result.message = "Store database already provisioned"
            return

        self._transition(result, ProvisioningState.RUN_SCHEMA)
        if not await self._apply_schema(channel, result):
            self._fail(result, "Schema application failed; remaining steps skipped")
            return

        self._transition(result, ProvisioningState.RUN_SEED)
        # Seed rows reference the store row, so it goes in first
        store = await self._ensure_store_record(channel, tenant_id, identity, options, result)
        if not await self._apply_seed(channel, tenant_id, identity, result):
            self._fail(result, "Seed data application failed; remaining steps skipped")
            return

        self._transition(result, ProvisioningState.CREATE_BOOTSTRAP_ROWS)
        await self._create_admin_user(channel, options, store, result)

        self._transition(result, ProvisioningState.SEED_DEFAULTS)
        await self._seed_slot_configurations(channel, tenant_id, options, store, result)
        await self._seed_seo_settings(channel, tenant_id, identity, options, result)
        await self._mark_provisioned(channel, tenant_id, result)

        self._transition(result, ProvisioningState.DONE)
        result.success = True
        if result.errors:
            result.message = f"Store database provisioned with {len(result.errors)} non-fatal error(s)"
        else:
            result.message = "Store database provisioned successfully"

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _store_identity(self, tenant_id: str, options: ProvisioningOptions) -> _StoreIdentity:
        registered = None
        if self.store_registry is not None:
            try:
                registered = await self.store_registry.get_store(tenant_id)
            except Exception as e:
                logger.warning(f"Could not read platform registry entry for store {tenant_id}: {e}")

        name = options.store_name or (registered.name if registered else None) or DEFAULT_STORE_NAME
        slug = options.store_slug or (registered.slug if registered else None) or generate_slug(name)
        return _StoreIdentity(
            name=name,
            slug=slug,
            registered_domain=registered.custom_domain if registered else None
        )

    async def _is_provisioned(self, channel: ExecutionChannel, tenant_id: str) -> bool:
        """Provisioned means the store row carries the marker written when a run reached DONE."""
        try:
            rows = await channel.select("stores", {"id": tenant_id}, columns=["settings"], limit=1)
        except TenantPlexusError as e:
            if not getattr(e, "is_undefined_table", False):
                logger.warning(f"Provisioning check for store {tenant_id} failed, treating as unprovisioned: {e}")
            return False
        return bool(rows) and bool(_as_dict(rows[0].get("settings")).get(PROVISIONED_MARKER))

    async def _mark_provisioned(
        self,
        channel: ExecutionChannel,
        tenant_id: str,
        result: ProvisioningResult
    ) -> None:
        try:
            rows = await channel.select("stores", {"id": tenant_id}, columns=["settings"], limit=1)
            if not rows:
                logger.warning(f"Store {tenant_id} has no store record; the next run will provision it again")
                return
            store_settings = _as_dict(rows[0].get("settings"))
            store_settings[PROVISIONED_MARKER] = _now().isoformat()
            await channel.update("stores", {"settings": store_settings, "updated_at": _now()}, {"id": tenant_id})
        except Exception as e:
            logger.error(f"Marking store {tenant_id} as provisioned failed: {e}")
            result.add_error(ProvisioningStep.CREATE_STORE, str(e))

    async def _apply_schema(self, channel: ExecutionChannel, result: ProvisioningResult) -> bool:
        bundle = self.schema_bundle
        try:
            await channel.apply_script(bundle.tables_sql, timeout=self.settings.management_api_schema_timeout_seconds)
        except Exception as e:
            logger.error(f"Creating tables for store {result.tenant_id} failed: {e}")
            result.add_error(ProvisioningStep.MIGRATIONS, str(e), {"phase": "tables"})
            return False
        result.tables_created = list(bundle.table_names)
        logger.info(f"Created {len(bundle.table_names)} tables for store {result.tenant_id}")

        if bundle.has_constraints:
            try:
                await channel.apply_script(
                    bundle.constraints_sql,
                    timeout=self.settings.management_api_constraints_timeout_seconds
                )
            except Exception as e:
                # Tables stay usable without referential constraints
                logger.warning(f"Applying foreign keys for store {result.tenant_id} failed: {e}")
                result.add_error(ProvisioningStep.FOREIGN_KEYS, str(e))
        return True

    async def _apply_seed(
        self,
        channel: ExecutionChannel,
        tenant_id: str,
        identity: _StoreIdentity,
        result: ProvisioningResult
    ) -> bool:
        try:
            await channel.apply_script(
                self.schema_bundle.render_seed(tenant_id, identity.slug),
                timeout=self.settings.management_api_seed_timeout_seconds
            )
        except Exception as e:
            logger.error(f"Seeding data for store {tenant_id} failed: {e}")
            result.add_error(ProvisioningStep.MIGRATIONS, str(e), {"phase": "seed"})
            return False
        result.data_seeded.append("seed_data")
        return True

    async def _theme_settings(self, options: ProvisioningOptions) -> Dict[str, Any]:
        defaults: Dict[str, Any] = {}
        if self.theme_presets is not None:
            defaults = await self.theme_presets.get_theme_defaults(options.theme_preset)
        return {**defaults, **(options.settings.get("theme") or {})}

    async def _store_settings(self, options: ProvisioningOptions) -> Dict[str, Any]:
        store_settings = dict(options.settings)
        store_settings["theme"] = await self._theme_settings(options)
        if options.user_email:
            store_settings.setdefault("store_email", options.user_email)
        return store_settings

    async def _ensure_store_record(
        self,
        channel: ExecutionChannel,
        tenant_id: str,
        identity: _StoreIdentity,
        options: ProvisioningOptions,
        result: ProvisioningResult
    ) -> Optional[Dict[str, Any]]:
        """Create the tenant's store row if absent, or fill in an empty theme. Soft step."""
        try:
            existing = await channel.select("stores", {"id": tenant_id}, limit=1)
            if existing:
                store = existing[0]
                store_settings = _as_dict(store.get("settings"))
                if not store_settings.get("theme"):
                    store_settings["theme"] = await self._theme_settings(options)
                    await channel.update(
                        "stores", {"settings": store_settings, "updated_at": _now()}, {"id": tenant_id}
                    )
                    store["settings"] = store_settings
                    logger.info(f"Restored empty theme settings on store {tenant_id}")
            else:
                row = {
                    "id": tenant_id,
                    "user_id": options.user_id or str(uuid.uuid4()),
                    "name": identity.name,
                    "slug": identity.slug,
                    "currency": options.currency,
                    "timezone": options.timezone,
                    "is_active": True,
                    "settings": await self._store_settings(options),
                    "contact_email": options.user_email,
                }
                inserted = await channel.insert("stores", row, ignore_conflicts=True)
                store = inserted[0] if inserted else row
                result.data_seeded.append("stores")
                logger.info(f"Created store record for {tenant_id} ('{identity.name}', slug '{identity.slug}')")
        except Exception as e:
            logger.error(f"Creating store record for {tenant_id} failed: {e}")
            result.add_error(ProvisioningStep.CREATE_STORE, str(e))
            return None

        if self.store_registry is not None:
            try:
                await self.store_registry.register_store(PlatformStoreCreate(
                    tenant_id=tenant_id,
                    name=identity.name,
                    slug=identity.slug,
                    custom_domain=options.custom_domain or identity.registered_domain
                ))
            except Exception as e:
                logger.warning(f"Could not register store {tenant_id} in the platform registry: {e}")
        return store

    async def _create_admin_user(
        self,
        channel: ExecutionChannel,
        options: ProvisioningOptions,
        store: Optional[Dict[str, Any]],
        result: ProvisioningResult
    ) -> None:
        if not options.user_email:
            logger.info(f"No owner email supplied for store {result.tenant_id}; skipping admin user.")
            return

        user_id = options.user_id or (store or {}).get("user_id") or str(uuid.uuid4())
        row = {
            "id": str(user_id),
            "email": options.user_email,
            "password": options.user_password_hash or "",
            "first_name": options.user_first_name or "Store",
            "last_name": options.user_last_name or "Owner",
            "role": "admin",
            "account_type": "agency",
            "is_active": True,
            "email_verified": True,
        }
        try:
            # An existing user with the same identity counts as created
            await channel.insert("users", row, ignore_conflicts=True)
        except Exception as e:
            logger.error(f"Creating admin user for store {result.tenant_id} failed: {e}")
            result.add_error(ProvisioningStep.CREATE_USER, str(e))
            return
        result.data_seeded.append("users")

    def _slot_rows(
        self,
        tenant_id: str,
        user_id: str,
        page_type: str,
        configuration: Dict[str, Any],
        now: datetime
    ) -> List[Dict[str, Any]]:
        published_id = str(uuid.uuid4())
        published = {
            "id": published_id,
            "user_id": str(user_id),
            "store_id": tenant_id,
            "configuration": configuration,
            "version": "1.0",
            "version_number": 1,
            "is_active": True,
            "status": "published",
            "page_type": page_type,
            "published_at": now,
            "has_unpublished_changes": False,
        }
        draft = {
            "id": str(uuid.uuid4()),
            "user_id": str(user_id),
            "store_id": tenant_id,
            "configuration": configuration,
            "version": "2.0",
            "version_number": 2,
            "is_active": True,
            "status": "draft",
            "page_type": page_type,
            "parent_version_id": published_id,
            "has_unpublished_changes": False,
        }
        return [published, draft]

    async def _seed_slot_configurations(
        self,
        channel: ExecutionChannel,
        tenant_id: str,
        options: ProvisioningOptions,
        store: Optional[Dict[str, Any]],
        result: ProvisioningResult
    ) -> None:
        """Insert a published and a draft layout row for each page type that has none."""
        try:
            existing = await channel.select("slot_configurations", {"store_id": tenant_id}, columns=["page_type"])
            present = {row.get("page_type") for row in existing}
            missing = [page for page in (options.page_types or DEFAULT_PAGE_TYPES) if page not in present]
            if not missing:
                logger.info(f"Slot configurations already present for store {tenant_id}")
                return

            user_id = options.user_id or (store or {}).get("user_id")
            if not user_id:
                raise ValueError("no store owner available to own slot configurations")

            now = _now()
            rows: List[Dict[str, Any]] = []
            for page_type in missing:
                configuration = self.layouts.build_configuration(page_type, now.isoformat())
                if configuration is None:
                    continue
                rows.extend(self._slot_rows(tenant_id, user_id, page_type, configuration, now))

            if rows:
                await channel.insert("slot_configurations", rows)
                result.data_seeded.append("slot_configurations")
                logger.info(f"Seeded slot configurations for {len(rows) // 2} page type(s) on store {tenant_id}")
        except Exception as e:
            logger.error(f"Seeding slot configurations for store {tenant_id} failed: {e}")
            result.add_error(ProvisioningStep.SEED_SLOT_CONFIGURATIONS, str(e))

    async def _storefront_base_url(
        self,
        channel: ExecutionChannel,
        tenant_id: str,
        identity: _StoreIdentity,
        options: ProvisioningOptions
    ) -> str:
        if options.custom_domain:
            return ensure_https(options.custom_domain)

        try:
            domains = await channel.select(
                "custom_domains", {"store_id": tenant_id, "is_primary": True}, columns=["domain"], limit=1
            )
        except TenantPlexusError as e:
            logger.debug(f"Custom domain lookup for store {tenant_id} failed: {e}")
            domains = []
        if domains and domains[0].get("domain"):
            return ensure_https(domains[0]["domain"])

        if identity.registered_domain:
            return ensure_https(identity.registered_domain)

        return f"{self.settings.platform_public_url.rstrip('/')}/public/{identity.slug}"

    async def _seed_seo_settings(
        self,
        channel: ExecutionChannel,
        tenant_id: str,
        identity: _StoreIdentity,
        options: ProvisioningOptions,
        result: ProvisioningResult
    ) -> None:
        try:
            if await channel.select("seo_settings", {"store_id": tenant_id}, columns=["id"], limit=1):
                logger.info(f"SEO settings already present for store {tenant_id}")
                return

            base_url = await self._storefront_base_url(channel, tenant_id, identity, options)
            await channel.insert("seo_settings", {
                "store_id": tenant_id,
                "robots_txt_content": render_robots_txt(base_url),
                "canonical_settings": {"base_url": base_url, "auto_canonical_filtered_pages": True},
            }, ignore_conflicts=True)
        except Exception as e:
            logger.error(f"Seeding SEO settings for store {tenant_id} failed: {e}")
            result.add_error(ProvisioningStep.SEED_SEO_SETTINGS, str(e))
            return
        result.data_seeded.append("seo_settings")
