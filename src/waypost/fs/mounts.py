"""MountRegistry and MountDescriptor."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from .paths import ROOT_PROTOCOL

DEFAULT_TRANSPORT = "__default__"

WILDCARD = "*"
"""Mount key whose ``destination`` applies to protocols without their own."""


@dataclass(frozen=True, slots=True)
class MountDescriptor:
    """Policy and routing for a single protocol."""

    protocol: str
    """Mount name, e.g. ``"home"`` in ``home:///docs``."""

    transport_name: str = DEFAULT_TRANSPORT
    """Name of the transport serving this mount."""

    enabled: bool = True
    """Disabled mounts reject every external operation."""

    read_only: bool = False
    """Read-only mounts reject mutating operations."""

    required_group: str | None = None
    """Group the caller must belong to, if any."""

    destination: str | None = None
    """Host directory template for disk-backed transports."""


class MountRegistry:
    """Immutable snapshot of the configured mounts.

    Built once from configuration and never edited.  To reload, build a
    new registry and hand it to :meth:`Dispatcher.reload`.
    """

    def __init__(self, mounts: Mapping[str, MountDescriptor] | None = None) -> None:
        self._mounts: Mapping[str, MountDescriptor] = MappingProxyType(dict(mounts or {}))

    @classmethod
    def from_config(
        cls,
        mounts: Mapping[str, Any] | None = None,
        groups: Mapping[str, str] | None = None,
    ) -> MountRegistry:
        """Build a registry from the ``vfs.mounts`` / ``vfs.groups`` settings.

        A mount value is either a destination string or a mapping with
        optional ``transport``, ``enabled``, ``ro`` and ``destination`` keys.
        Protocols that only appear in *groups* get a default mount with
        the group requirement attached.
        """
        mounts = mounts or {}
        groups = groups or {}

        descriptors: dict[str, MountDescriptor] = {}
        for protocol in [*mounts, *(g for g in groups if g not in mounts)]:
            raw = mounts.get(protocol)
            if isinstance(raw, str):
                raw = {"destination": raw}
            elif not isinstance(raw, Mapping):
                raw = {}

            transport = raw.get("transport")
            descriptors[protocol] = MountDescriptor(
                protocol=protocol,
                transport_name=transport if isinstance(transport, str) else DEFAULT_TRANSPORT,
                enabled=raw.get("enabled") is not False,
                read_only=raw.get("ro") is True,
                required_group=groups.get(protocol) or None,
                destination=raw.get("destination"),
            )
        return cls(descriptors)

    def lookup(self, protocol: str) -> MountDescriptor:
        """Return the descriptor for *protocol*, or the implicit default."""
        found = self._mounts.get(protocol)
        if found is None:
            return MountDescriptor(protocol=protocol)
        return found

    def transport_name_for(self, protocol: str) -> str:
        """Transport serving *protocol*.  The server root always uses the default."""
        if protocol == ROOT_PROTOCOL:
            return DEFAULT_TRANSPORT
        return self.lookup(protocol).transport_name

    def destination_for(self, protocol: str) -> str | None:
        """Destination template for *protocol*, falling back to the ``*`` mount."""
        found = self._mounts.get(protocol)
        if found is not None and found.destination:
            return found.destination
        wildcard = self._mounts.get(WILDCARD)
        return wildcard.destination if wildcard is not None else None

    def list_mounts(self) -> list[MountDescriptor]:
        """List explicitly configured mounts, sorted by protocol."""
        return sorted(self._mounts.values(), key=lambda m: m.protocol)

    def __contains__(self, protocol: object) -> bool:
        return protocol in self._mounts

    def __len__(self) -> int:
        return len(self._mounts)
