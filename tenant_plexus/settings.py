# tenant_plexus/settings.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import List, Optional
import logging
from pathlib import Path

# Configure logging for settings module
logger = logging.getLogger(__name__)
if not logging.getLogger().hasHandlers():
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s SETTINGS.PY - [%(levelname)s] - %(message)s'
    )

# This settings.py file is at <project>/tenant_plexus/settings.py
# Two .parent calls will get to the project directory
PROJECT_ROOT = Path(__file__).parent.parent.resolve()
DOTENV_PATH = PROJECT_ROOT / ".env"

if DOTENV_PATH.exists():
    logger.info(f"SETTINGS.PY: .env file FOUND at explicit path: {DOTENV_PATH}")
else:
    logger.info(
        f"SETTINGS.PY: .env file NOT FOUND at explicit path: {DOTENV_PATH}. "
        "Will rely on OS env vars or defaults."
    )


class Settings(BaseSettings):
    """
    Application settings with environment variable support.

    A single instance is built at the composition root (FastAPI lifespan, CLI)
    and passed into the resolver, provisioner and health checker constructors.
    """

    app_name: str = "Tenant Plexus"
    debug_mode: bool = False
    log_level: str = "INFO"

    # Platform database holding tenant connection descriptors, the store
    # registry and theme presets
    sqlite_db_path: str = "./tenant_plexus_data.sqlite3"

    # Security settings
    admin_api_key: Optional[str] = Field(
        default=None,
        description="API Key for accessing admin routes."
    )
    plexus_encryption_key: Optional[str] = Field(
        default=None,
        description="Fernet key used to encrypt tenant database credentials. MUST be set for production."
    )

    # Public storefront host used to build sitemap URLs when a tenant has no custom domain
    platform_public_url: str = "https://www.dainostore.com"

    # Remote management API used when a tenant database is only reachable by token
    management_api_base_url: str = "https://api.supabase.com"
    management_api_default_timeout_seconds: float = 30.0
    management_api_schema_timeout_seconds: float = 120.0
    management_api_constraints_timeout_seconds: float = 60.0
    management_api_seed_timeout_seconds: float = 180.0
    management_api_max_batch_bytes: int = 2 * 1024 * 1024

    # Tenant backend connection tuning
    tenant_http_timeout_seconds: float = 30.0
    tenant_pool_max_size: int = 10
    tenant_connect_timeout_seconds: float = 10.0

    # Tables used to probe and diagnose tenant databases
    connection_probe_table: str = "stores"
    required_tables: List[str] = Field(
        default_factory=lambda: [
            "stores", "products", "categories", "sales_orders", "customers", "languages"
        ]
    )

    model_config = SettingsConfigDict(
        env_file=DOTENV_PATH if DOTENV_PATH.exists() else None,
        extra="ignore",
        env_file_encoding='utf-8'
    )


# Initialize settings instance
settings = Settings()

# Log configuration values for debugging (sensitive values are masked)
logger.info(
    f"SETTINGS.PY: Post-Settings() settings.debug_mode: "
    f"{settings.debug_mode} (Type: {type(settings.debug_mode)})"
)
logger.info(
    f"SETTINGS.PY: Post-Settings() settings.sqlite_db_path: '{settings.sqlite_db_path}'"
)
logger.info(
    f"SETTINGS.PY: Post-Settings() settings.plexus_encryption_key: "
    f"{'********' if settings.plexus_encryption_key else 'None'}"
)
logger.info(
    f"SETTINGS.PY: Post-Settings() settings.admin_api_key: "
    f"{'********' if settings.admin_api_key else 'None'}"
)
