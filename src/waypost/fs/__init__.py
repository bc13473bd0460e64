"""Virtual path resolution and request dispatch."""

from waypost.fs.auth import Authenticator, SessionAuthenticator
from waypost.fs.dispatcher import Dispatcher, Resolution
from waypost.fs.exceptions import (
    InvalidPathError,
    PermissionDeniedError,
    TransportNotFoundError,
    TransportOperationError,
    UnsupportedMethodError,
    WaypostError,
)
from waypost.fs.mounts import DEFAULT_TRANSPORT, MountDescriptor, MountRegistry
from waypost.fs.paths import ROOT_PROTOCOL, VirtualPath, parse_virtual_path
from waypost.fs.permissions import WRITE_METHODS, Access, check_access
from waypost.fs.requests import (
    ENDPOINTS,
    CallContext,
    InboundRequest,
    Side,
    governing_path,
    normalize_request,
)
from waypost.fs.transports import Transport, TransportRegistry, WriteStream
from waypost.fs.types import DispatchResult, ErrorKind, FileStat

__all__ = [
    "DEFAULT_TRANSPORT",
    "ENDPOINTS",
    "ROOT_PROTOCOL",
    "WRITE_METHODS",
    "Access",
    "Authenticator",
    "CallContext",
    "DispatchResult",
    "Dispatcher",
    "ErrorKind",
    "FileStat",
    "InboundRequest",
    "InvalidPathError",
    "MountDescriptor",
    "MountRegistry",
    "PermissionDeniedError",
    "Resolution",
    "SessionAuthenticator",
    "Side",
    "Transport",
    "TransportNotFoundError",
    "TransportOperationError",
    "TransportRegistry",
    "UnsupportedMethodError",
    "VirtualPath",
    "WaypostError",
    "WriteStream",
    "check_access",
    "governing_path",
    "normalize_request",
    "parse_virtual_path",
]
