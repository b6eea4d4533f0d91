# tenant_plexus/connections/models.py
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict

from ..adapters.base import Adapter
from ..credentials.models import BackendKind


@dataclass
class LiveConnection:
    """A probed adapter held by the resolver cache. Owned by the cache until evicted."""
    tenant_id: str
    adapter: Adapter
    backend_kind: BackendKind
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def summary(self) -> Dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "backend_kind": self.backend_kind.value,
            "created_at": self.created_at.isoformat(),
            "connection": self.adapter.describe(),
        }
