# tenant_plexus/provisioning/models.py
from enum import Enum
from pydantic import BaseModel, Field, SecretStr
from typing import Optional, Dict, Any, List

from ..errors import StepError


class ProvisioningState(str, Enum):
    START = "start"
    CHECK_PROVISIONED = "check_provisioned"
    ALREADY_DONE = "already_done"
    RUN_SCHEMA = "run_schema"
    RUN_SEED = "run_seed"
    CREATE_BOOTSTRAP_ROWS = "create_bootstrap_rows"
    SEED_DEFAULTS = "seed_defaults"
    DONE = "done"
    FAILED = "failed"


class ProvisioningStep(str, Enum):
    """Tags recorded on step errors. Only MIGRATIONS is fatal."""
    MIGRATIONS = "migrations"
    FOREIGN_KEYS = "foreign_keys"
    CREATE_STORE = "create_store"
    CREATE_USER = "create_user"
    SEED_SLOT_CONFIGURATIONS = "seed_slot_configurations"
    SEED_SEO_SETTINGS = "seed_seo_settings"
    GENERAL = "general"


class ProvisioningChannel(str, Enum):
    ADAPTER = "adapter"
    MANAGEMENT_API = "management_api"


DEFAULT_PAGE_TYPES = [
    "product", "category", "cart", "homepage", "header",
    "account", "login", "checkout", "success",
]


class ManagementCredentials(BaseModel):
    """Token-scoped access to a tenant project's remote management API."""
    access_token: SecretStr
    project_ref: str = Field(description="Project identifier the token is scoped to")


class ProvisioningOptions(BaseModel):
    store_name: Optional[str] = None
    store_slug: Optional[str] = None
    currency: str = "USD"
    timezone: str = "UTC"
    theme_preset: Optional[str] = Field(
        default=None,
        description="Named theme preset; the system default preset is used when omitted"
    )
    settings: Dict[str, Any] = Field(
        default_factory=dict,
        description="Store settings; a 'theme' key overrides preset defaults key by key"
    )
    user_id: Optional[str] = None
    user_email: Optional[str] = None
    user_password_hash: Optional[str] = None
    user_first_name: Optional[str] = None
    user_last_name: Optional[str] = None
    custom_domain: Optional[str] = None
    force: bool = Field(default=False, description="Run every step even if the tenant is already provisioned")
    management: Optional[ManagementCredentials] = None
    page_types: Optional[List[str]] = None


class ProvisioningResult(BaseModel):
    tenant_id: str
    success: bool = False
    already_provisioned: bool = False
    message: str = ""
    final_state: ProvisioningState = ProvisioningState.START
    channel: Optional[ProvisioningChannel] = None
    tables_created: List[str] = Field(default_factory=list)
    data_seeded: List[str] = Field(default_factory=list)
    errors: List[StepError] = Field(default_factory=list)

    def add_error(self, step: ProvisioningStep, error: str, detail: Optional[Dict[str, Any]] = None) -> None:
        self.errors.append(StepError(step=ProvisioningStep(step).value, error=error, detail=detail))

    @property
    def has_fatal_error(self) -> bool:
        return any(e.step == ProvisioningStep.MIGRATIONS.value for e in self.errors)

    def errors_for(self, step: ProvisioningStep) -> List[StepError]:
        return [e for e in self.errors if e.step == ProvisioningStep(step).value]


class StoreNameUpdate(BaseModel):
    name: str = Field(min_length=1)
