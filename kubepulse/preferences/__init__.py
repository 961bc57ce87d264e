"""Preference persistence.

Exposes:
  PreferencesStore       -- per-context PanelPreferences, last-write-wins
  MemoryKeyValueStore    -- in-process backend
  JsonFileKeyValueStore  -- atomic JSON file backend
"""

from kubepulse.preferences.backends import JsonFileKeyValueStore, KeyValueStore, MemoryKeyValueStore
from kubepulse.preferences.store import PREFERENCES_KEY, PreferencesStore

__all__ = [
    "JsonFileKeyValueStore",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "PREFERENCES_KEY",
    "PreferencesStore",
]
