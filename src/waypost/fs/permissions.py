"""Access enum and mount-level policy gate."""

from __future__ import annotations

from collections.abc import Collection
from enum import Enum
from typing import TYPE_CHECKING

from .paths import ROOT_PROTOCOL

if TYPE_CHECKING:
    from .mounts import MountDescriptor

WRITE_METHODS = frozenset(
    {"upload", "write", "delete", "copy", "move", "mkdir", "createWriteStream"}
)
"""Operations refused on read-only mounts."""


class Access(str, Enum):
    """Outcome of a policy check."""

    ALLOW = "allow"
    DENY = "deny"


def check_access(
    mount: MountDescriptor,
    method: str,
    caller_groups: Collection[str],
    is_internal: bool = False,
) -> Access:
    """Evaluate *mount* policy for *method*.

    Internal requests are trusted and skip every rule.  The server root
    (``$``) is only reachable internally.
    """
    if is_internal:
        return Access.ALLOW
    if mount.protocol == ROOT_PROTOCOL:
        return Access.DENY
    if not mount.enabled:
        return Access.DENY
    if mount.read_only and method in WRITE_METHODS:
        return Access.DENY
    if mount.required_group and mount.required_group not in caller_groups:
        return Access.DENY
    return Access.ALLOW
