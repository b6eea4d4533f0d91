# tenant_plexus/core/global_registry.py
import logging
from dataclasses import dataclass
from typing import Optional

from ..connections.resolver import ConnectionResolver
from ..credentials.service import CredentialService
from ..credentials.sqlite_credential_store import SQLiteCredentialStore, SQLiteStoreRegistry
from ..health.service import TenantHealthChecker
from ..provisioning.service import TenantProvisioner
from ..provisioning.theme_presets import SQLiteThemePresetSource
from ..settings import Settings
from ..utils.security import FernetEncryptor

logger = logging.getLogger(__name__)


@dataclass
class PlatformComponents:
    """Every long-lived service, wired once per process from one Settings instance."""
    settings: Settings
    credential_store: SQLiteCredentialStore
    store_registry: SQLiteStoreRegistry
    theme_presets: SQLiteThemePresetSource
    resolver: ConnectionResolver
    credential_service: CredentialService
    provisioner: TenantProvisioner
    health_checker: TenantHealthChecker

    async def shutdown(self) -> None:
        await self.resolver.close_all()
        await self.credential_store.teardown()
        await self.store_registry.teardown()


async def build_platform_components(app_settings: Settings) -> PlatformComponents:
    credential_store = SQLiteCredentialStore(app_settings.sqlite_db_path)
    store_registry = SQLiteStoreRegistry(app_settings.sqlite_db_path)
    await credential_store.initialize()
    await store_registry.initialize()

    encryptor = FernetEncryptor(app_settings.plexus_encryption_key)
    resolver = ConnectionResolver(credential_store, encryptor, app_settings)
    theme_presets = SQLiteThemePresetSource(app_settings.sqlite_db_path)

    components = PlatformComponents(
        settings=app_settings,
        credential_store=credential_store,
        store_registry=store_registry,
        theme_presets=theme_presets,
        resolver=resolver,
        credential_service=CredentialService(credential_store, encryptor, resolver),
        provisioner=TenantProvisioner(
            resolver,
            app_settings,
            store_registry=store_registry,
            theme_presets=theme_presets
        ),
        health_checker=TenantHealthChecker(
            credential_store, resolver, app_settings, store_registry=store_registry
        ),
    )
    logger.info("Platform components initialized.")
    return components


# Populated by the application lifespan
PLATFORM_COMPONENTS: Optional[PlatformComponents] = None


def set_platform_components(components: Optional[PlatformComponents]) -> None:
    global PLATFORM_COMPONENTS
    PLATFORM_COMPONENTS = components


def get_platform_components() -> PlatformComponents:
    if PLATFORM_COMPONENTS is None:
        raise RuntimeError("Platform components have not been initialized.")
    return PLATFORM_COMPONENTS
