# tenant_plexus/adapters/factory.py
import logging
from typing import Any, Dict

from pydantic import ValidationError

from ..credentials.models import BackendKind, RestCredentials, SqlCredentials
from ..errors import ConfigurationError
from ..settings import Settings
from .base import Adapter
from .mysql_adapter import MySQLAdapter
from .postgres_adapter import PostgresAdapter
from .rest_adapter import RestAdapter

logger = logging.getLogger(__name__)

_REQUIRED_FIELDS = {
    BackendKind.SUPABASE: ("project_url", "service_role_key"),
    BackendKind.POSTGRESQL: ("host", "database", "username", "password"),
    BackendKind.MYSQL: ("host", "database", "username", "password"),
}


def required_fields(backend_kind: BackendKind) -> tuple:
    return _REQUIRED_FIELDS[BackendKind(backend_kind)]


def build_adapter(backend_kind: BackendKind, credentials: Dict[str, Any], settings: Settings) -> Adapter:
    """
    Construct the adapter for a backend kind from decrypted credentials.

    This is the only place that chooses a concrete adapter class. No I/O is
    performed; pools and HTTP clients connect lazily on first use.

    Raises:
        ConfigurationError: If the kind is unknown or required fields are missing
    """
    try:
        kind = BackendKind(backend_kind)
    except ValueError:
        raise ConfigurationError(f"Unsupported database type: {backend_kind}")

    missing = [name for name in _REQUIRED_FIELDS[kind] if not credentials.get(name)]
    if missing:
        raise ConfigurationError(
            f"{kind.value} credentials are missing required fields: {', '.join(missing)}"
        )

    try:
        if kind is BackendKind.SUPABASE:
            return RestAdapter(
                RestCredentials.model_validate(credentials),
                timeout_seconds=settings.tenant_http_timeout_seconds
            )

        sql_credentials = SqlCredentials.model_validate(credentials)
        adapter_cls = PostgresAdapter if kind is BackendKind.POSTGRESQL else MySQLAdapter
        return adapter_cls(
            sql_credentials,
            max_pool_size=settings.tenant_pool_max_size,
            connect_timeout=settings.tenant_connect_timeout_seconds
        )
    except ValidationError as e:
        raise ConfigurationError(f"Invalid {kind.value} credentials: {e.error_count()} field error(s)") from e
