# tenant_plexus/provisioning/theme_presets.py
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ..credentials.sqlite_credential_store import _SQLiteStoreBase

logger = logging.getLogger(__name__)


class AbstractThemePresetSource(ABC):
    """Keyed lookup of theme defaults merged into new store settings."""

    @abstractmethod
    async def get_theme_defaults(self, preset_name: Optional[str] = None) -> Dict[str, Any]:
        """
        Return the named preset's theme settings, or the system default preset
        when no name is given. Never raises; an unknown preset or a lookup
        failure yields an empty dict.
        """
        pass


class SQLiteThemePresetSource(_SQLiteStoreBase, AbstractThemePresetSource):
    """Theme presets stored in the platform database's `theme_presets` table."""

    async def get_theme_defaults(self, preset_name: Optional[str] = None) -> Dict[str, Any]:
        try:
            if preset_name:
                row = await self._fetchone(
                    "SELECT theme_settings FROM theme_presets WHERE preset_name = ? AND is_active = 1",
                    (preset_name,)
                )
            else:
                row = await self._fetchone(
                    "SELECT theme_settings FROM theme_presets "
                    "WHERE is_system_default = 1 AND is_active = 1 LIMIT 1"
                )
            if row is None:
                logger.info(f"No theme preset found for '{preset_name or 'system default'}'; using empty theme.")
                return {}
            theme = json.loads(row["theme_settings"] or "{}")
            return theme if isinstance(theme, dict) else {}
        except Exception as e:
            logger.warning(f"Could not load theme preset '{preset_name or 'system default'}': {e}")
            return {}

    async def save_preset(
        self,
        preset_name: str,
        theme_settings: Dict[str, Any],
        is_system_default: bool = False
    ) -> None:
        """Create or replace a preset. Marking one as system default clears the flag on the others."""
        if is_system_default:
            await self._execute_query("UPDATE theme_presets SET is_system_default = 0")
        await self._execute_query(
            "INSERT OR REPLACE INTO theme_presets "
            "(preset_name, theme_settings, is_active, is_system_default, created_at) "
            "VALUES (?, ?, 1, ?, ?)",
            (
                preset_name,
                json.dumps(theme_settings),
                1 if is_system_default else 0,
                datetime.now(timezone.utc).isoformat()
            )
        )
        logger.info(f"Saved theme preset '{preset_name}'.")
