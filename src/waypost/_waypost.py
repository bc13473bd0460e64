"""Bootstrap and the synchronous ``Waypost`` facade."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from waypost.config import Settings
from waypost.fs.dispatcher import Dispatcher
from waypost.fs.mounts import DEFAULT_TRANSPORT, MountRegistry
from waypost.fs.requests import InboundRequest
from waypost.fs.transports import TransportRegistry
from waypost.transports.local_disk import LocalDiskTransport

if TYPE_CHECKING:
    from collections.abc import Iterable

    from waypost.fs.auth import Authenticator
    from waypost.fs.transports import Transport
    from waypost.fs.types import DispatchResult

logger = logging.getLogger(__name__)


def mount_roots(mounts: MountRegistry) -> dict[str, str]:
    """Destination templates of every mount that declares one."""
    return {m.protocol: m.destination for m in mounts.list_mounts() if m.destination}


def _as_settings(settings: Settings | Mapping[str, Any] | None) -> Settings:
    if isinstance(settings, Settings):
        return settings
    return Settings(settings)


def create_dispatcher(
    settings: Settings | Mapping[str, Any] | None = None,
    *,
    transports: Iterable[Transport] = (),
    authenticator: Authenticator | None = None,
) -> Dispatcher:
    """Build mount and transport registries from *settings*.

    When no transport is registered as ``__default__``, a
    ``LocalDiskTransport`` serving the configured mount destinations
    takes that role.
    """
    settings = _as_settings(settings)
    mounts = MountRegistry.from_config(settings.mounts, settings.groups)

    available = list(transports)
    if not any(t.name == DEFAULT_TRANSPORT for t in available):
        available.append(
            LocalDiskTransport(mount_roots(mounts), server_root=settings.server_root)
        )

    registry = TransportRegistry(available)
    logger.debug(
        "Dispatcher with %d mount(s), transports %s", len(mounts), registry.names()
    )
    return Dispatcher(
        mounts,
        registry,
        authenticator=authenticator,
        default_protocol=settings.default_protocol,
    )


class Waypost:
    """Synchronous front end to the async :class:`Dispatcher`.

    Runs a private event loop on a daemon thread so plain threaded
    servers can share one dispatcher.  Every call blocks until its
    request has completed.

    Usage::

        with Waypost({"vfs": {"mounts": {"home": "/srv/%USERNAME%"}}}) as vfs:
            result = vfs.get("get/home:///notes.txt", session={"username": "ann"})
            result.unwrap()
    """

    def __init__(
        self,
        settings: Settings | Mapping[str, Any] | None = None,
        *,
        transports: Iterable[Transport] = (),
        authenticator: Authenticator | None = None,
    ) -> None:
        self._closed = False
        self._dispatcher = create_dispatcher(
            settings, transports=transports, authenticator=authenticator
        )

        # Private event loop in a daemon thread
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._loop.run_forever, daemon=True)
        self._thread.start()

        self._run(self._dispatcher.open())

    def _run(self, coro: Any) -> Any:
        """Submit *coro* to the private loop and block for the result."""
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result()

    @property
    def dispatcher(self) -> Dispatcher:
        return self._dispatcher

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def reload(self, settings: Settings | Mapping[str, Any]) -> None:
        """Swap in mount policy from new *settings*.  Transports are kept."""
        settings = _as_settings(settings)
        self._dispatcher.reload(MountRegistry.from_config(settings.mounts, settings.groups))

    def close(self) -> None:
        """Close transports, stop the event loop and join the thread."""
        if self._closed:
            return
        self._closed = True

        try:
            self._run(self._dispatcher.close())
        finally:
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._thread.join(timeout=5)

    def __enter__(self) -> Waypost:
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Requests (sync)
    # ------------------------------------------------------------------

    def handle(
        self, request: InboundRequest, session: Mapping[str, Any] | None = None
    ) -> DispatchResult:
        return self._run(self._dispatcher.handle(request, session))

    def get(self, endpoint: str, session: Mapping[str, Any] | None = None) -> DispatchResult:
        """Legacy ``GET /get/<path>`` read."""
        return self.handle(InboundRequest("GET", endpoint), session)

    def post(
        self,
        endpoint: str,
        data: Mapping[str, Any] | None = None,
        session: Mapping[str, Any] | None = None,
    ) -> DispatchResult:
        """``POST /<endpoint>`` with a JSON-style argument body."""
        return self.handle(InboundRequest("POST", endpoint, data), session)

    def vrequest(
        self,
        method: str,
        args: Mapping[str, Any] | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> DispatchResult:
        """Trusted server-side request."""
        return self._run(self._dispatcher.vrequest(method, args, options))
