# tenant_plexus/connections/resolver.py
import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from ..adapters.base import Adapter
from ..adapters.factory import build_adapter
from ..credentials.storage_interfaces import AbstractCredentialStore
from ..errors import (
    ConfigurationError,
    ConnectionError,
    CredentialError,
    InactiveError,
    NotConfiguredError,
    TenantPlexusError,
)
from ..settings import Settings
from ..utils.security import FernetEncryptor
from .models import LiveConnection

logger = logging.getLogger(__name__)

AdapterFactory = Callable[..., Adapter]

_INVALID_TENANT_IDS = {"", "undefined", "null", "none"}


class ConnectionResolver:
    """
    Translates a tenant id into a ready-to-use, connectivity-checked Adapter.

    This is the only supported way to obtain tenant data access. Probed
    adapters are cached per tenant for the lifetime of the process; entries
    are evicted only by `clear_cache` or `close_all`.
    """

    def __init__(
        self,
        credential_store: AbstractCredentialStore,
        encryptor: FernetEncryptor,
        settings: Settings,
        adapter_factory: AdapterFactory = build_adapter
    ):
        self.credential_store = credential_store
        self.encryptor = encryptor
        self.settings = settings
        self.adapter_factory = adapter_factory
        self._cache: Dict[str, LiveConnection] = {}
        self._pending: Dict[str, "asyncio.Task[Optional[LiveConnection]]"] = {}

    async def resolve(self, tenant_id: str, use_cache: bool = True) -> Adapter:
        """
        Get the adapter for a tenant's database.

        With `use_cache`, a cached adapter is returned without re-verification,
        and concurrent misses for the same tenant share a single construction.
        Without it, a fresh adapter is built and probed and the caller owns it
        (and must close it).

        Raises:
            NotConfiguredError: No descriptor exists for the tenant
            InactiveError: The descriptor is deactivated
            CredentialError: The credentials could not be decrypted
            ConfigurationError: Required connection fields are missing
            ConnectionError: The connectivity probe failed
        """
        if tenant_id is None or str(tenant_id).strip().lower() in _INVALID_TENANT_IDS:
            raise NotConfiguredError(tenant_id, f"Invalid store ID provided: {tenant_id!r}")

        if not use_cache:
            live = await self._build(tenant_id)
            return live.adapter

        while True:
            cached = self._cache.get(tenant_id)
            if cached is not None:
                return cached.adapter

            task = self._pending.get(tenant_id)
            if task is None:
                task = asyncio.ensure_future(self._build_and_cache(tenant_id))
                self._pending[tenant_id] = task
                task.add_done_callback(lambda t, key=tenant_id: self._forget_pending(key, t))

            # Shielded so one cancelled waiter does not abort the construction others await
            live = await asyncio.shield(task)
            if live is not None:
                return live.adapter

    def _forget_pending(self, tenant_id: str, task: asyncio.Future) -> None:
        if self._pending.get(tenant_id) is task:
            del self._pending[tenant_id]
        if not task.cancelled():
            # Mark the exception retrieved; every waiter re-raises it
            task.exception()

    async def _build_and_cache(self, tenant_id: str) -> Optional[LiveConnection]:
        live = await self._build(tenant_id)
        if self._pending.get(tenant_id) is not asyncio.current_task():
            # clear_cache ran while this connection was being built
            await live.adapter.close()
            logger.info(f"Discarded connection for store {tenant_id} built before its cache was cleared")
            return None
        previous = self._cache.get(tenant_id)
        self._cache[tenant_id] = live
        if previous is not None and previous.adapter is not live.adapter:
            await previous.adapter.close()
        logger.info(f"Cached {live.backend_kind.value} connection for store {tenant_id}")
        return live

    async def _build(self, tenant_id: str) -> LiveConnection:
        descriptor = await self.credential_store.get_descriptor(tenant_id)
        if descriptor is None:
            raise NotConfiguredError(tenant_id)
        # Checked before decryption so a deactivated tenant never touches its secrets
        if not descriptor.is_active:
            raise InactiveError(tenant_id)

        credentials = self.encryptor.decrypt_credentials(descriptor.encrypted_credentials)
        if credentials is None:
            raise CredentialError(tenant_id)

        try:
            adapter = self.adapter_factory(descriptor.backend_kind, credentials, self.settings)
        except ConfigurationError as e:
            e.tenant_id = tenant_id
            raise

        logger.info(f"Testing {descriptor.backend_kind.value} connection for store {tenant_id}")
        if not await adapter.test_connection(self.settings.connection_probe_table):
            diagnostic = adapter.last_error
            await adapter.close()
            raise ConnectionError(
                tenant_id,
                f"Failed to connect to {descriptor.backend_kind.value} database for store {tenant_id}"
                + (f": {diagnostic}" if diagnostic else ""),
                diagnostic=diagnostic
            )

        return LiveConnection(
            tenant_id=tenant_id,
            adapter=adapter,
            backend_kind=descriptor.backend_kind
        )

    async def clear_cache(self, tenant_id: Optional[str] = None) -> int:
        """
        Close and evict one tenant's cached connection, or all of them.

        Returns:
            Number of connections evicted
        """
        if tenant_id is not None:
            self._pending.pop(tenant_id, None)
            entries = [self._cache.pop(tenant_id)] if tenant_id in self._cache else []
        else:
            self._pending.clear()
            entries = list(self._cache.values())
            self._cache.clear()

        for live in entries:
            await live.adapter.close()

        if tenant_id is not None:
            logger.info(f"Cleared connection cache for store {tenant_id} ({len(entries)} evicted)")
        else:
            logger.info(f"Cleared all cached connections ({len(entries)} evicted)")
        return len(entries)

    async def close_all(self) -> None:
        """Close every cached connection. Called on application shutdown."""
        for task in list(self._pending.values()):
            task.cancel()
        await self.clear_cache()

    def cached_connections(self) -> List[Dict[str, Any]]:
        return [live.summary() for live in self._cache.values()]

    def is_cached(self, tenant_id: str) -> bool:
        return tenant_id in self._cache

    async def test_tenant_connection(self, tenant_id: str) -> Dict[str, Any]:
        """Resolve without the cache and report the outcome instead of raising."""
        try:
            adapter = await self.resolve(tenant_id, use_cache=False)
        except TenantPlexusError as e:
            return {"success": False, "message": e.message, "tenant_id": tenant_id}
        await adapter.close()
        return {"success": True, "message": "Connection successful", "tenant_id": tenant_id}
