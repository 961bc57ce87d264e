"""Per-cluster panel preferences."""

from __future__ import annotations

from typing import Any

import structlog

from kubepulse.models.connectivity import require_context_name
from kubepulse.models.preferences import PanelPreferences
from kubepulse.preferences.backends import KeyValueStore

_log = structlog.get_logger(component="preferences")

PREFERENCES_KEY = "panelPreferences"


class PreferencesStore:
    """Reads and writes ``PanelPreferences`` keyed by context name.

    All contexts share one record under ``PREFERENCES_KEY``.  Saves are
    last-write-wins per context; nothing is merged field by field.
    """

    def __init__(self, backend: KeyValueStore) -> None:
        self._backend = backend

    def _record(self) -> dict[str, Any]:
        record = self._backend.get(PREFERENCES_KEY, {})
        return record if isinstance(record, dict) else {}

    def get(self, context_name: str) -> PanelPreferences:
        """Saved preferences, or defaults if none were saved."""
        require_context_name(context_name)
        stored = self._record().get(context_name)
        if stored is None:
            return PanelPreferences()
        return PanelPreferences.from_dict(stored)

    def all(self) -> dict[str, PanelPreferences]:
        return {name: PanelPreferences.from_dict(raw) for name, raw in self._record().items()}

    async def save(self, context_name: str, prefs: PanelPreferences) -> bool:
        """Persist *prefs* for *context_name*; returns False if the write failed."""
        require_context_name(context_name)
        if not isinstance(prefs, PanelPreferences):
            raise ValueError(f"expected PanelPreferences, got {type(prefs).__name__}")
        record = self._record()
        record[context_name] = prefs.to_dict()
        try:
            await self._backend.update(PREFERENCES_KEY, record)
        except (OSError, TypeError, ValueError) as exc:
            _log.error("preferences_save_failed", context=context_name, error=str(exc))
            return False
        _log.debug("preferences_saved", context=context_name)
        return True
