# tenant_plexus/health/models.py
from enum import Enum
from pydantic import BaseModel, Field
from typing import List, Optional


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    NOT_FOUND = "not_found"
    NO_DATABASE = "no_database"
    DATABASE_INACTIVE = "database_inactive"
    CONNECTION_FAILED = "connection_failed"
    EMPTY = "empty"
    PARTIAL = "partial"
    MISSING_STORE_RECORD = "missing_store_record"
    ERROR = "error"


class RecommendedAction(str, Enum):
    CONNECT_DATABASE = "connect_database"
    REACTIVATE_DATABASE = "reactivate_database"
    UPDATE_CREDENTIALS = "update_credentials"
    PROVISION_DATABASE = "provision_database"
    CREATE_STORE_RECORD = "create_store_record"
    REMOVE_STORE = "remove_store"


RECOMMENDED_ACTIONS = {
    HealthStatus.HEALTHY: [],
    HealthStatus.NOT_FOUND: [],
    HealthStatus.NO_DATABASE: [RecommendedAction.CONNECT_DATABASE],
    HealthStatus.DATABASE_INACTIVE: [RecommendedAction.REACTIVATE_DATABASE, RecommendedAction.REMOVE_STORE],
    HealthStatus.CONNECTION_FAILED: [RecommendedAction.UPDATE_CREDENTIALS, RecommendedAction.REMOVE_STORE],
    HealthStatus.EMPTY: [RecommendedAction.PROVISION_DATABASE, RecommendedAction.REMOVE_STORE],
    HealthStatus.PARTIAL: [RecommendedAction.PROVISION_DATABASE, RecommendedAction.REMOVE_STORE],
    HealthStatus.MISSING_STORE_RECORD: [
        RecommendedAction.CREATE_STORE_RECORD, RecommendedAction.PROVISION_DATABASE
    ],
    HealthStatus.ERROR: [RecommendedAction.REMOVE_STORE],
}


class TenantHealthReport(BaseModel):
    """Diagnostic snapshot of one tenant database, for operator tooling."""
    tenant_id: str
    status: HealthStatus
    database_configured: bool = False
    database_connected: bool = False
    tables_provisioned: bool = False
    store_record_exists: bool = False
    required_tables: List[str] = Field(default_factory=list)
    missing_tables: List[str] = Field(default_factory=list)
    message: str = ""
    error: Optional[str] = None
    recommended_actions: List[RecommendedAction] = Field(default_factory=list)

    def model_post_init(self, __context) -> None:
        if not self.recommended_actions:
            self.recommended_actions = list(RECOMMENDED_ACTIONS[self.status])
