"""Durable key/value backends for preference storage."""

from __future__ import annotations

import asyncio
import copy
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol

import structlog

_log = structlog.get_logger(component="preferences.backends")


class KeyValueStore(Protocol):
    """Host-supplied durable store.  ``update`` must apply in memory before it awaits."""

    def get(self, key: str, default: Any = None) -> Any: ...

    async def update(self, key: str, value: Any) -> None: ...


class MemoryKeyValueStore:
    """Process-local store; used by tests and ephemeral hosts."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(initial) if initial else {}

    def get(self, key: str, default: Any = None) -> Any:
        return copy.deepcopy(self._data.get(key, default))

    async def update(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)


class JsonFileKeyValueStore:
    """All keys in one JSON document, rewritten atomically on each update.

    The file is read once on first access.  Writes run in a worker thread and
    are serialized so the file always reflects the last update.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._data: dict[str, Any] | None = None
        self._write_lock = asyncio.Lock()

    def _load(self) -> dict[str, Any]:
        if self._data is None:
            self._data = {}
            if self.path.exists():
                try:
                    loaded = json.loads(self.path.read_text(encoding="utf-8"))
                except (OSError, json.JSONDecodeError) as exc:
                    _log.warning("store_unreadable", path=str(self.path), error=str(exc))
                else:
                    if isinstance(loaded, dict):
                        self._data = loaded
        return self._data

    def get(self, key: str, default: Any = None) -> Any:
        return copy.deepcopy(self._load().get(key, default))

    async def update(self, key: str, value: Any) -> None:
        data = self._load()
        data[key] = copy.deepcopy(value)
        snapshot = json.dumps(data, indent=2, sort_keys=True)
        async with self._write_lock:
            await asyncio.to_thread(self._write, snapshot)

    def _write(self, text: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(text)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
