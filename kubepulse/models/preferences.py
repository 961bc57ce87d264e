"""Per-cluster panel preferences."""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any


@dataclass(frozen=True)
class PanelPreferences:
    """Persisted UI settings for one cluster context."""

    follow_mode: bool = True
    show_timestamps: bool = False
    line_limit: int | None = 1000  # None means "all"
    show_previous: bool = False
    refresh_interval: float = 30.0
    refresh_enabled: bool = True

    def __post_init__(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            if not _valid(f.name, value):
                raise ValueError(f"invalid {f.name}: {value!r}")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: object) -> PanelPreferences:
        """Rebuild from a stored mapping.

        Unknown keys are ignored and each field with a missing or invalid value
        falls back to its default, so a partly corrupt record still loads.
        """
        defaults = cls()
        if not isinstance(raw, dict):
            return defaults
        values: dict[str, Any] = {}
        for f in fields(cls):
            default = getattr(defaults, f.name)
            value = raw.get(f.name, default)
            values[f.name] = value if _valid(f.name, value) else default
        return cls(**values)


def _valid(name: str, value: object) -> bool:
    if name == "line_limit":
        return value is None or (isinstance(value, int) and not isinstance(value, bool) and value > 0)
    if name == "refresh_interval":
        return isinstance(value, int | float) and not isinstance(value, bool) and value > 0
    return isinstance(value, bool)
