"""Request normalization: HTTP GET, HTTP POST and virtual calls."""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

from .exceptions import InvalidPathError, UnsupportedMethodError

ENDPOINTS = frozenset(
    {
        "read",
        "write",
        "upload",
        "delete",
        "copy",
        "move",
        "mkdir",
        "find",
        "fileinfo",
        "scandir",
        "freeSpace",
        "exists",
    }
)
"""Methods reachable through :meth:`Dispatcher.dispatch`."""

TRANSPORT_METHODS: Mapping[str, str] = MappingProxyType(
    {
        **{name: name for name in ENDPOINTS if name != "freeSpace"},
        "freeSpace": "free_space",
        "createReadStream": "create_read_stream",
        "createWriteStream": "create_write_stream",
    }
)
"""Wire method name -> ``Transport`` attribute."""

_GET_PREFIX = "get/"


class Side(str, Enum):
    """Which path of a two-path operation (``copy``/``move``) is evaluated."""

    SOURCE = "src"
    DESTINATION = "dest"


@dataclass(frozen=True, slots=True)
class InboundRequest:
    """Transport-neutral description of an HTTP call into the VFS.

    Attributes:
        http_method: ``"GET"`` or ``"POST"``.
        endpoint: URL suffix below the VFS root, e.g. ``"get/home/a.txt"``
            for GET or ``"scandir"`` for POST.
        data: Parsed JSON body (POST only).
    """

    http_method: str
    endpoint: str
    data: Mapping[str, Any] | None = None


@dataclass(frozen=True, slots=True)
class CallContext:
    """Per-request values handed through the dispatcher to transports."""

    method: str
    args: Mapping[str, Any] = field(default_factory=dict)
    session: Mapping[str, Any] = field(default_factory=dict)
    is_internal: bool = False
    legacy_get: bool = False

    @classmethod
    def from_request(
        cls, request: InboundRequest, session: Mapping[str, Any] | None = None
    ) -> CallContext:
        method, args = normalize_request(request)
        return cls(
            method=method,
            args=args,
            session=session if session is not None else {},
            legacy_get=request.http_method.upper() == "GET",
        )

    @classmethod
    def virtual(
        cls,
        method: str,
        args: Mapping[str, Any] | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> CallContext:
        """Trusted server-side call; *options* stand in for session values."""
        return cls(
            method=method,
            args=dict(args or {}),
            session=MappingProxyType(dict(options or {})),
            is_internal=True,
        )

    @property
    def username(self) -> str | None:
        return self.session.get("username")

    def with_call(self, method: str, args: Mapping[str, Any]) -> CallContext:
        """Same caller and trust level, different operation."""
        return dataclasses.replace(self, method=method, args=dict(args), legacy_get=False)


def normalize_request(request: InboundRequest) -> tuple[str, dict[str, Any]]:
    """Map an HTTP request onto canonical ``(method, args)``.

    GET is always a ``read`` of the URL suffix with one leading ``get/``
    segment removed.  POST names the method in the endpoint and carries
    arguments in the body.
    """
    verb = request.http_method.upper()
    if verb == "GET":
        suffix = request.endpoint
        if suffix.startswith("/"):
            suffix = suffix[1:]
        if suffix.startswith(_GET_PREFIX):
            suffix = suffix[len(_GET_PREFIX) :]
        return "read", {"path": suffix}

    if verb == "POST":
        method = request.endpoint.strip("/")
        if method not in ENDPOINTS:
            raise UnsupportedMethodError(f"No such VFS method: {method}")
        if request.data is not None and not isinstance(request.data, Mapping):
            raise InvalidPathError(
                f"Request body for {method} must be an object, got {type(request.data).__name__}"
            )
        return method, dict(request.data or {})

    raise UnsupportedMethodError(f"Unsupported HTTP method: {request.http_method}")


def governing_path(method: str, args: Mapping[str, Any], side: Side = Side.SOURCE) -> Any:
    """Return the raw path argument that decides mount and transport.

    ``copy``/``move`` use ``src`` or ``dest`` depending on *side*,
    ``freeSpace`` uses ``root`` and every other method uses ``path``.
    """
    if method in ("copy", "move"):
        key = side.value
    elif method == "freeSpace":
        key = "root"
    else:
        key = "path"

    value = args.get(key)
    if value is None:
        raise InvalidPathError(f"Missing '{key}' argument for {method}")
    return value
