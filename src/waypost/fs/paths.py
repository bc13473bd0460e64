"""Virtual path parsing: ``protocol://path`` strings."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from .exceptions import InvalidPathError

SEPARATOR = "://"

ROOT_PROTOCOL = "$"
"""Protocol that denotes the server root.  Only internal calls may use it."""


@dataclass(frozen=True, slots=True)
class VirtualPath:
    """A parsed ``protocol://path`` location.

    Attributes:
        query: The normalized full string, ``protocol + "://" + path``.
        protocol: Mount name, the text before the first ``://``.
        path: Location inside the mount, always starting with one ``/``.
    """

    query: str
    protocol: str
    path: str

    @property
    def name(self) -> str:
        """Final path component (empty for a mount root)."""
        return self.path.rstrip("/").rsplit("/", 1)[-1]

    @property
    def parent(self) -> VirtualPath:
        head = self.path.rstrip("/").rsplit("/", 1)[0]
        return make_virtual_path(self.protocol, head or "/")

    def join(self, name: str) -> VirtualPath:
        base = self.path.rstrip("/")
        return make_virtual_path(self.protocol, f"{base}/{name.lstrip('/')}")


def make_virtual_path(protocol: str, path: str) -> VirtualPath:
    path = "/" + path.lstrip("/")
    return VirtualPath(query=f"{protocol}{SEPARATOR}{path}", protocol=protocol, path=path)


def parse_virtual_path(raw: Any, default_protocol: str | None = None) -> VirtualPath:
    """Parse *raw* into a :class:`VirtualPath`.

    Splits on the first ``://``.  A string without a protocol is only
    accepted when *default_protocol* is given (the legacy GET fallback).

    Examples:
        parse_virtual_path("home://foo/bar").path -> "/foo/bar"
        parse_virtual_path("home:///foo").path -> "/foo"
        parse_virtual_path("docs/a.txt", "home").query -> "home:///docs/a.txt"
    """
    if isinstance(raw, Mapping):
        raw = raw.get("path")
    if not isinstance(raw, str) or not raw:
        raise InvalidPathError(f"Invalid virtual path: {raw!r}")

    protocol, sep, path = raw.partition(SEPARATOR)
    if not sep:
        if default_protocol is None:
            raise InvalidPathError(f"Missing protocol in virtual path: {raw}")
        protocol, path = default_protocol, raw

    return make_virtual_path(protocol, path)
