# tenant_plexus/provisioning/layouts.py
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

LAYOUTS_DIR = Path(__file__).parent / "layouts"


class PageLayoutSource:
    """
    Static page layout definitions, one JSON file per page type.

    Definitions are read once and reused verbatim as slot configuration
    seed content.
    """

    def __init__(self, layouts_dir: Optional[Path] = None):
        self.layouts_dir = Path(layouts_dir or LAYOUTS_DIR)
        self._cache: Dict[str, Dict[str, Any]] = {}

    def get_layout(self, page_type: str) -> Optional[Dict[str, Any]]:
        """Return the definition for `page_type`, or None when none is packaged."""
        if page_type in self._cache:
            return self._cache[page_type]

        path = self.layouts_dir / f"{page_type}.json"
        if not path.is_file():
            logger.warning(f"No layout definition for page type '{page_type}' at {path}")
            return None

        with path.open(encoding="utf-8") as f:
            layout = json.load(f)
        self._cache[page_type] = layout
        return layout

    def build_configuration(self, page_type: str, timestamp: str) -> Optional[Dict[str, Any]]:
        """Turn a layout definition into the configuration stored on a slot_configurations row."""
        layout = self.get_layout(page_type)
        if layout is None:
            return None

        slots = layout.get("slots", {})
        return {
            "page_name": layout.get("page_name", page_type.title()),
            "slot_type": layout.get("slot_type", f"{page_type}_layout"),
            "slots": slots,
            "rootSlots": [slot_id for slot_id, slot in slots.items() if not slot.get("parentId")],
            "slotDefinitions": {
                "views": layout.get("views", []),
                "cmsBlocks": layout.get("cmsBlocks", []),
            },
            "metadata": {
                "created": timestamp,
                "lastModified": timestamp,
                "source": f"{page_type}-config",
                "pageType": page_type,
            },
        }
