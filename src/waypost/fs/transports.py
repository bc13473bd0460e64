"""Transport protocol and TransportRegistry.

A transport implements the full VFS operation set for one kind of
storage.  Every operation receives the request context, the parsed
virtual path that selected the transport, and the complete argument
mapping, so two-path operations (``copy``/``move``) can read the other
path from ``args`` themselves.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from .paths import VirtualPath
    from .requests import CallContext
    from .types import FileStat


@runtime_checkable
class WriteStream(Protocol):
    """Writable byte sink returned by ``create_write_stream``."""

    async def write(self, data: bytes) -> int: ...

    async def close(self) -> None: ...


@runtime_checkable
class Transport(Protocol):
    """Core interface every transport must implement."""

    name: str

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Called once at boot.  No-op if not needed."""
        ...

    async def close(self) -> None:
        """Called on shutdown."""
        ...

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def read(self, context: CallContext, path: VirtualPath, args: Mapping[str, Any]) -> Any: ...

    async def exists(
        self, context: CallContext, path: VirtualPath, args: Mapping[str, Any]
    ) -> bool: ...

    async def fileinfo(
        self, context: CallContext, path: VirtualPath, args: Mapping[str, Any]
    ) -> FileStat: ...

    async def scandir(
        self, context: CallContext, path: VirtualPath, args: Mapping[str, Any]
    ) -> list[FileStat]: ...

    async def find(
        self, context: CallContext, path: VirtualPath, args: Mapping[str, Any]
    ) -> list[FileStat]: ...

    async def free_space(
        self, context: CallContext, path: VirtualPath, args: Mapping[str, Any]
    ) -> int | None: ...

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    async def write(self, context: CallContext, path: VirtualPath, args: Mapping[str, Any]) -> Any: ...

    async def upload(self, context: CallContext, path: VirtualPath, args: Mapping[str, Any]) -> Any: ...

    async def delete(self, context: CallContext, path: VirtualPath, args: Mapping[str, Any]) -> Any: ...

    async def copy(self, context: CallContext, path: VirtualPath, args: Mapping[str, Any]) -> Any: ...

    async def move(self, context: CallContext, path: VirtualPath, args: Mapping[str, Any]) -> Any: ...

    async def mkdir(self, context: CallContext, path: VirtualPath, args: Mapping[str, Any]) -> Any: ...

    # ------------------------------------------------------------------
    # Streams
    # ------------------------------------------------------------------

    async def create_read_stream(
        self, context: CallContext, path: VirtualPath, args: Mapping[str, Any]
    ) -> AsyncIterator[bytes]: ...

    async def create_write_stream(
        self, context: CallContext, path: VirtualPath, args: Mapping[str, Any]
    ) -> WriteStream: ...


class TransportRegistry:
    """Immutable name -> transport lookup, built once at boot."""

    def __init__(self, transports: Iterable[Transport] | Mapping[str, Transport] = ()) -> None:
        if isinstance(transports, Mapping):
            by_name = dict(transports)
        else:
            by_name = {}
            for transport in transports:
                if transport.name in by_name:
                    raise ValueError(f"Duplicate transport name: {transport.name}")
                by_name[transport.name] = transport
        self._transports: Mapping[str, Transport] = MappingProxyType(by_name)

    def get(self, name: str) -> Transport | None:
        """Exact-name lookup.  ``None`` when nothing is registered under *name*."""
        return self._transports.get(name)

    def names(self) -> list[str]:
        return sorted(self._transports)

    def list_transports(self) -> list[Transport]:
        return list(dict.fromkeys(self._transports.values()))

    def __contains__(self, name: object) -> bool:
        return name in self._transports

    def __len__(self) -> int:
        return len(self._transports)
