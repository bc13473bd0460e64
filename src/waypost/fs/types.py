"""Result types: DispatchResult, ErrorKind, FileStat."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from .exceptions import (
    InvalidPathError,
    PermissionDeniedError,
    TransportNotFoundError,
    TransportOperationError,
    UnsupportedMethodError,
)

if TYPE_CHECKING:
    from datetime import datetime


class ErrorKind(str, Enum):
    """Tag identifying why a dispatch failed."""

    PERMISSION_DENIED = "permission_denied"
    TRANSPORT_NOT_FOUND = "transport_not_found"
    TRANSPORT_FAILED = "transport_failed"
    INVALID_PATH = "invalid_path"
    UNSUPPORTED_METHOD = "unsupported_method"


_ERROR_KINDS: dict[type[Exception], ErrorKind] = {
    PermissionDeniedError: ErrorKind.PERMISSION_DENIED,
    TransportNotFoundError: ErrorKind.TRANSPORT_NOT_FOUND,
    TransportOperationError: ErrorKind.TRANSPORT_FAILED,
    InvalidPathError: ErrorKind.INVALID_PATH,
    UnsupportedMethodError: ErrorKind.UNSUPPORTED_METHOD,
}


@dataclass
class DispatchResult:
    """Outcome of a single dispatched VFS request.

    Exactly one of ``result`` (on success) or ``error``/``exception``
    (on failure) is meaningful.  For transport failures ``exception`` is
    the exception the transport raised, untouched.
    """

    success: bool
    message: str
    result: Any = None
    error: ErrorKind | None = None
    exception: BaseException | None = None

    @classmethod
    def ok(cls, result: Any, method: str) -> DispatchResult:
        return cls(success=True, message=f"{method} completed", result=result)

    @classmethod
    def from_error(cls, exc: Exception) -> DispatchResult:
        kind = _ERROR_KINDS.get(type(exc), ErrorKind.TRANSPORT_FAILED)
        original = exc.original if isinstance(exc, TransportOperationError) else exc
        return cls(success=False, message=str(exc), error=kind, exception=original)

    def unwrap(self) -> Any:
        """Return the payload, or re-raise the failure."""
        if self.success:
            return self.result
        if self.exception is not None:
            raise self.exception
        raise RuntimeError(self.message)


@dataclass
class FileStat:
    """File/directory metadata as returned by transports."""

    path: str
    filename: str
    type: str
    size: int = 0
    mime: str | None = None
    ctime: datetime | None = None
    mtime: datetime | None = None

    @property
    def is_directory(self) -> bool:
        return self.type == "dir"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
