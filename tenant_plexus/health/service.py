# tenant_plexus/health/service.py
import logging
from typing import List, Optional

from ..adapters.base import Adapter
from ..connections.resolver import ConnectionResolver
from ..credentials.storage_interfaces import AbstractCredentialStore, AbstractStoreRegistry
from ..errors import QueryError, TenantPlexusError
from ..settings import Settings
from .models import HealthStatus, TenantHealthReport

logger = logging.getLogger(__name__)


class TenantHealthChecker:
    """
    Classifies a tenant database's provisioning state without changing it.

    Each check narrows the status: descriptor present, active, reachable,
    required tables present, store record present. Unexpected failures map
    to the `error` status instead of propagating.
    """

    def __init__(
        self,
        credential_store: AbstractCredentialStore,
        resolver: ConnectionResolver,
        settings: Settings,
        store_registry: Optional[AbstractStoreRegistry] = None
    ):
        self.credential_store = credential_store
        self.resolver = resolver
        self.store_registry = store_registry
        self.required_tables = list(settings.required_tables)
        self.store_table = settings.connection_probe_table

    async def check_health(self, tenant_id: str) -> TenantHealthReport:
        try:
            report = await self._diagnose(tenant_id)
        except Exception as e:
            logger.error(f"Health check for store {tenant_id} failed unexpectedly: {e}", exc_info=True)
            report = TenantHealthReport(
                tenant_id=tenant_id,
                status=HealthStatus.ERROR,
                required_tables=self.required_tables,
                message="Health check failed",
                error=str(e)
            )
        logger.info(f"Health of store {tenant_id}: {report.status.value}")
        return report

    async def _diagnose(self, tenant_id: str) -> TenantHealthReport:
        descriptor = await self.credential_store.get_descriptor(tenant_id)
        if descriptor is None:
            if self.store_registry is not None and await self.store_registry.get_store(tenant_id):
                return TenantHealthReport(
                    tenant_id=tenant_id,
                    status=HealthStatus.NO_DATABASE,
                    required_tables=self.required_tables,
                    message="Store exists but has no database connected"
                )
            return TenantHealthReport(
                tenant_id=tenant_id,
                status=HealthStatus.NOT_FOUND,
                required_tables=self.required_tables,
                message="Store not found"
            )

        if not descriptor.is_active:
            return TenantHealthReport(
                tenant_id=tenant_id,
                status=HealthStatus.DATABASE_INACTIVE,
                database_configured=True,
                required_tables=self.required_tables,
                message="Database connection is inactive"
            )

        try:
            adapter = await self.resolver.resolve(tenant_id, use_cache=False)
        except TenantPlexusError as e:
            return TenantHealthReport(
                tenant_id=tenant_id,
                status=HealthStatus.CONNECTION_FAILED,
                database_configured=True,
                required_tables=self.required_tables,
                message="Cannot connect to tenant database",
                error=e.message
            )

        try:
            return await self._inspect_schema(tenant_id, adapter)
        finally:
            await adapter.close()

    async def _missing_tables(self, adapter: Adapter) -> List[str]:
        missing = []
        for table in self.required_tables:
            try:
                await adapter.select_from(table).limit(1).run()
            except QueryError as e:
                if not e.is_undefined_table:
                    raise
                missing.append(table)
        return missing

    async def _inspect_schema(self, tenant_id: str, adapter: Adapter) -> TenantHealthReport:
        missing = await self._missing_tables(adapter)
        base = dict(
            tenant_id=tenant_id,
            database_configured=True,
            database_connected=True,
            required_tables=self.required_tables,
            missing_tables=missing,
        )

        if len(missing) == len(self.required_tables):
            return TenantHealthReport(
                **base, status=HealthStatus.EMPTY, message="Database is empty; no required tables exist"
            )
        if missing:
            return TenantHealthReport(
                **base,
                status=HealthStatus.PARTIAL,
                message=f"Database is partially provisioned; missing {', '.join(missing)}"
            )

        store = await adapter.select_from(self.store_table).where("id", tenant_id).first()
        if store is None:
            return TenantHealthReport(
                **base,
                status=HealthStatus.MISSING_STORE_RECORD,
                tables_provisioned=True,
                message="Tables exist but the store record is missing"
            )
        return TenantHealthReport(
            **base,
            status=HealthStatus.HEALTHY,
            tables_provisioned=True,
            store_record_exists=True,
            message="Store database is healthy"
        )
