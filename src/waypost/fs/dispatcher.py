"""Dispatcher: routes requests through mount policy to transports."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .auth import SessionAuthenticator
from .exceptions import (
    PermissionDeniedError,
    TransportNotFoundError,
    TransportOperationError,
    UnsupportedMethodError,
    WaypostError,
)
from .paths import parse_virtual_path
from .permissions import Access, check_access
from .requests import (
    ENDPOINTS,
    TRANSPORT_METHODS,
    CallContext,
    Side,
    governing_path,
)
from .types import DispatchResult

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Mapping

    from .auth import Authenticator
    from .mounts import MountDescriptor, MountRegistry
    from .paths import VirtualPath
    from .requests import InboundRequest
    from .transports import Transport, TransportRegistry, WriteStream

logger = logging.getLogger(__name__)

TWO_PATH_METHODS = frozenset({"copy", "move"})

DEFAULT_PROTOCOL = "home"


@dataclass(frozen=True, slots=True)
class Resolution:
    """A request that passed policy and has a transport to run on."""

    parsed: VirtualPath
    mount: MountDescriptor
    transport: Transport


class Dispatcher:
    """Routes VFS requests to transports via the mount registry.

    Each request runs strictly in order: parse the governing path, gate
    it against mount policy (external callers only), pick the transport
    named by the mount, then invoke it.  Policy failures never reach a
    transport.  There are no retries and no fallbacks: every failure is
    reported once in the returned :class:`DispatchResult`.

    The mount and transport registries are immutable.  ``reload()``
    swaps the whole mount registry; a request in flight keeps using the
    snapshot it started with.
    """

    def __init__(
        self,
        mounts: MountRegistry,
        transports: TransportRegistry,
        authenticator: Authenticator | None = None,
        default_protocol: str = DEFAULT_PROTOCOL,
    ) -> None:
        self._mounts = mounts
        self._transports = transports
        self._authenticator = authenticator or SessionAuthenticator()
        self.default_protocol = default_protocol

    @property
    def mounts(self) -> MountRegistry:
        return self._mounts

    @property
    def transports(self) -> TransportRegistry:
        return self._transports

    def reload(self, mounts: MountRegistry) -> None:
        """Replace the mount registry with a freshly built one."""
        self._mounts = mounts

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Open every registered transport."""
        for transport in self._transports.list_transports():
            await transport.open()

    async def close(self) -> None:
        """Close every registered transport."""
        for transport in self._transports.list_transports():
            try:
                await transport.close()
            except Exception:
                logger.warning("Transport close failed for %s", transport.name, exc_info=True)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def _parse(self, context: CallContext, side: Side) -> VirtualPath:
        raw = governing_path(context.method, context.args, side)
        default = self.default_protocol if context.legacy_get else None
        return parse_virtual_path(raw, default)

    def _gate(
        self, context: CallContext, parsed: VirtualPath, mounts: MountRegistry
    ) -> MountDescriptor:
        mount = mounts.lookup(parsed.protocol)
        if context.is_internal:
            return mount

        groups: frozenset[str] = frozenset()
        if mount.required_group and self._authenticator.has_group(context, mount.required_group):
            groups = frozenset({mount.required_group})

        if check_access(mount, context.method, groups) is Access.DENY:
            logger.debug("Denied %s on %s", context.method, parsed.query)
            raise PermissionDeniedError()
        return mount

    def _transport_for(self, parsed: VirtualPath, mounts: MountRegistry) -> Transport:
        transport = self._transports.get(mounts.transport_name_for(parsed.protocol))
        if transport is None:
            logger.debug("No transport for %s", parsed.query)
            raise TransportNotFoundError(parsed.query)
        return transport

    def authorize(
        self, context: CallContext, side: Side = Side.SOURCE
    ) -> tuple[VirtualPath, MountDescriptor]:
        """Parse and gate one side of a request against its own mount.

        Raises ``PermissionDeniedError`` or ``InvalidPathError``.
        """
        parsed = self._parse(context, side)
        return parsed, self._gate(context, parsed, self._mounts)

    def resolve(self, context: CallContext) -> Resolution:
        """Parse, gate and pick the transport for *context*.

        ``copy``/``move`` gate the source and the destination, each
        against its own mount.  Both sides must be served by the same
        transport, which runs the operation.
        """
        mounts = self._mounts

        parsed = self._parse(context, Side.SOURCE)
        mount = self._gate(context, parsed, mounts)
        dest: VirtualPath | None = None
        if context.method in TWO_PATH_METHODS:
            dest = self._parse(context, Side.DESTINATION)
            self._gate(context, dest, mounts)

        transport = self._transport_for(parsed, mounts)
        if dest is not None and self._transport_for(dest, mounts) is not transport:
            logger.debug(
                "Cross-transport %s from %s to %s", context.method, parsed.query, dest.query
            )
            raise UnsupportedMethodError(
                f"Cross-transport {context.method} not supported: {parsed.query} -> {dest.query}"
            )
        return Resolution(parsed=parsed, mount=mount, transport=transport)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def dispatch(self, context: CallContext) -> DispatchResult:
        """Run one request to completion and report its outcome."""
        try:
            if context.method not in ENDPOINTS:
                raise UnsupportedMethodError(f"No such VFS method: {context.method}")
            resolution = self.resolve(context)
            operation = getattr(resolution.transport, TRANSPORT_METHODS[context.method], None)
            if operation is None:
                raise UnsupportedMethodError(
                    f"Transport {resolution.transport.name} does not support {context.method}"
                )
        except WaypostError as exc:
            return DispatchResult.from_error(exc)

        try:
            result = await operation(context, resolution.parsed, context.args)
        except Exception as exc:
            return DispatchResult.from_error(TransportOperationError(exc))
        return DispatchResult.ok(result, context.method)

    async def handle(
        self, request: InboundRequest, session: Mapping[str, Any] | None = None
    ) -> DispatchResult:
        """Normalize an HTTP request and dispatch it."""
        try:
            context = CallContext.from_request(request, session)
        except WaypostError as exc:
            return DispatchResult.from_error(exc)
        return await self.dispatch(context)

    async def request(
        self, parent: CallContext, method: str, args: Mapping[str, Any]
    ) -> DispatchResult:
        """Sub-request on behalf of *parent*, with the same session and trust."""
        return await self.dispatch(parent.with_call(method, args))

    async def vrequest(
        self,
        method: str,
        args: Mapping[str, Any] | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> DispatchResult:
        """Trusted server-side request.  May use the ``$`` server-root mount."""
        return await self.dispatch(CallContext.virtual(method, args, options))

    # ------------------------------------------------------------------
    # Streams
    # ------------------------------------------------------------------

    async def create_read_stream(self, context: CallContext, path: str) -> AsyncIterator[bytes]:
        """Open a byte stream on *path*.  Raises on any failure."""
        stream_context = context.with_call("createReadStream", {"path": path})
        resolution = self.resolve(stream_context)
        return await resolution.transport.create_read_stream(
            stream_context, resolution.parsed, stream_context.args
        )

    async def create_write_stream(self, context: CallContext, path: str) -> WriteStream:
        """Open a writable stream on *path*, gated like a write."""
        stream_context = context.with_call("createWriteStream", {"path": path})
        resolution = self.resolve(stream_context)
        return await resolution.transport.create_write_stream(
            stream_context, resolution.parsed, stream_context.args
        )
