"""
Durable key-value persistence for the host settings blob.

The discovery cache is stored as one named entry inside this blob.
"""

import json
import logging
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class SettingsStore(Protocol):
    """Load/save of an opaque settings blob."""

    def load(self) -> dict[str, Any]:
        """Return the stored blob, or an empty dict if nothing is stored."""
        ...

    def save(self, data: dict[str, Any]) -> None:
        """Replace the stored blob."""
        ...


class MemoryStore:
    """In-process store. Used when the host provides no durable storage."""

    def __init__(self, data: dict[str, Any] | None = None):
        self._data: dict[str, Any] = dict(data or {})

    def load(self) -> dict[str, Any]:
        return dict(self._data)

    def save(self, data: dict[str, Any]) -> None:
        self._data = dict(data)


class JsonFileStore:
    """Store backed by a single JSON file."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable data file {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def save(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Write-then-rename so readers never see a truncated file
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        tmp_path.replace(self.path)
