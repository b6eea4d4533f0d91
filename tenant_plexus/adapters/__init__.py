# tenant_plexus/adapters/__init__.py

"""Uniform query adapters over the supported tenant database backends."""

from .base import Adapter, Filter, QueryBuilder, normalize_filters
from .factory import build_adapter
from .mysql_adapter import MySQLAdapter
from .postgres_adapter import PostgresAdapter
from .rest_adapter import RestAdapter

__all__ = [
    "Adapter",
    "Filter",
    "QueryBuilder",
    "normalize_filters",
    "build_adapter",
    "MySQLAdapter",
    "PostgresAdapter",
    "RestAdapter",
]
