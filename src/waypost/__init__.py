"""waypost: virtual filesystem resolution and dispatch.

Maps ``protocol://path`` requests onto mounts, enforces mount policy,
and forwards each operation to the transport serving the mount.
"""

__version__ = "0.1.0"

from waypost._waypost import Waypost, create_dispatcher
from waypost.config import Settings
from waypost.fs.dispatcher import Dispatcher
from waypost.fs.exceptions import (
    InvalidPathError,
    PermissionDeniedError,
    TransportNotFoundError,
    TransportOperationError,
    UnsupportedMethodError,
    WaypostError,
)
from waypost.fs.mounts import MountDescriptor, MountRegistry
from waypost.fs.paths import VirtualPath, parse_virtual_path
from waypost.fs.requests import CallContext, InboundRequest, Side
from waypost.fs.transports import Transport, TransportRegistry
from waypost.fs.types import DispatchResult, ErrorKind, FileStat
from waypost.transports import DatabaseTransport, LocalDiskTransport

__all__ = [
    "CallContext",
    "DatabaseTransport",
    "DispatchResult",
    "Dispatcher",
    "ErrorKind",
    "FileStat",
    "InboundRequest",
    "InvalidPathError",
    "LocalDiskTransport",
    "MountDescriptor",
    "MountRegistry",
    "PermissionDeniedError",
    "Settings",
    "Side",
    "Transport",
    "TransportNotFoundError",
    "TransportOperationError",
    "TransportRegistry",
    "UnsupportedMethodError",
    "VirtualPath",
    "Waypost",
    "WaypostError",
    "__version__",
    "create_dispatcher",
    "parse_virtual_path",
]
