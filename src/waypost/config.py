"""Settings — JSON-backed configuration with dotted-key lookup."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from pathlib import Path
from types import MappingProxyType
from typing import Any

logger = logging.getLogger(__name__)

_MISSING = object()


class Settings:
    """Read-only view over a nested settings mapping.

    Usage::

        settings = Settings.from_file("settings.json")
        settings.get("vfs.mounts", {})
    """

    def __init__(self, data: Mapping[str, Any] | None = None) -> None:
        self._data: Mapping[str, Any] = MappingProxyType(dict(data or {}))

    @classmethod
    def from_file(cls, path: str | Path) -> Settings:
        """Load settings from a JSON file."""
        path = Path(path)
        with path.open(encoding="utf-8") as fh:
            data = json.load(fh)
        if not isinstance(data, Mapping):
            raise ValueError(f"Settings file must contain a JSON object: {path}")
        logger.debug("Loaded settings from %s", path)
        return cls(data)

    def get(self, key: str, default: Any = None) -> Any:
        """Walk a dotted *key* through nested mappings."""
        node: Any = self._data
        for part in key.split("."):
            if not isinstance(node, Mapping):
                return default
            node = node.get(part, _MISSING)
            if node is _MISSING:
                return default
        return node

    @property
    def mounts(self) -> Mapping[str, Any]:
        return self.get("vfs.mounts") or {}

    @property
    def groups(self) -> Mapping[str, str]:
        return self.get("vfs.groups") or {}

    @property
    def default_protocol(self) -> str:
        return self.get("vfs.defaultProtocol") or "home"

    @property
    def server_root(self) -> str:
        return self.get("vfs.serverRoot") or "."

    def as_dict(self) -> dict[str, Any]:
        return dict(self._data)
