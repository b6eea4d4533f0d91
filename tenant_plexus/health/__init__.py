# tenant_plexus/health/__init__.py

from .models import HealthStatus, RecommendedAction, TenantHealthReport
from .service import TenantHealthChecker

__all__ = ["HealthStatus", "RecommendedAction", "TenantHealthReport", "TenantHealthChecker"]
