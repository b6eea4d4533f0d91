# tenant_plexus/main.py
from fastapi import FastAPI
from contextlib import asynccontextmanager
import logging
from dotenv import load_dotenv
load_dotenv()

from .settings import settings
from .core.global_registry import build_platform_components, set_platform_components
from .connections.endpoints import connections_admin_router
from .credentials.endpoints import tenant_databases_admin_router
from .health.endpoints import health_admin_router
from .provisioning.endpoints import provisioning_admin_router
from .storage.sqlite_base import close_sqlite_db_connection, get_sqlite_db_connection

# Configure logging based on debug mode setting
if not logging.getLogger().hasHandlers():
    logging.basicConfig(
        level="DEBUG" if settings.debug_mode else settings.log_level,
        format='%(asctime)s - %(name)s [%(levelname)s] - %(message)s'
    )

logger = logging.getLogger(__name__)
logger.setLevel(logging.DEBUG if settings.debug_mode else logging.INFO)


@asynccontextmanager
async def plexus_app_lifespan(app_instance: FastAPI):
    """
    Builds the platform components on startup and releases every tenant
    connection pool and the platform database on shutdown.
    """
    logger.info("Application startup initiated.")
    try:
        await get_sqlite_db_connection(settings.sqlite_db_path)
        components = await build_platform_components(settings)
    except Exception as e:
        logger.error(f"Error during platform initialization: {e}", exc_info=True)
        raise
    set_platform_components(components)
    app_instance.state.components = components

    yield

    # Cleanup phase - ensure all resources are properly released
    logger.info("Application shutdown initiated.")
    try:
        await components.shutdown()
    except Exception as e_td:
        logger.error(f"Teardown error: {e_td}", exc_info=True)
    finally:
        set_platform_components(None)
        await close_sqlite_db_connection()
    logger.info("All components torn down.")


app = FastAPI(
    title=settings.app_name,
    debug=settings.debug_mode,
    lifespan=plexus_app_lifespan
)

app.include_router(tenant_databases_admin_router)
app.include_router(provisioning_admin_router)
app.include_router(health_admin_router)
app.include_router(connections_admin_router)


@app.get("/health", tags=["Health"])
async def service_health():
    """Liveness check for the service itself, not for any tenant database."""
    return {"status": "ok", "app": settings.app_name}
