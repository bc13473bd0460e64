"""Custom exception hierarchy for the waypost dispatch layer."""

from __future__ import annotations


class WaypostError(Exception):
    """Base exception for all waypost errors."""


class InvalidPathError(WaypostError):
    """Raised when a request carries no usable virtual path."""


class UnsupportedMethodError(WaypostError):
    """Raised when a request names a method outside the VFS operation set."""


class PermissionDeniedError(WaypostError):
    """Raised when mount policy rejects an operation."""

    def __init__(self, message: str = "Operation denied!") -> None:
        super().__init__(message)


class TransportNotFoundError(WaypostError):
    """Raised when no registered transport serves a mount."""

    def __init__(self, query: str) -> None:
        super().__init__(f"Cannot find VFS module for: {query}")
        self.query = query


class TransportOperationError(WaypostError):
    """Raised when a transport fails while performing an operation.

    The original exception is kept on ``original`` and as ``__cause__``.
    """

    def __init__(self, original: BaseException) -> None:
        super().__init__(str(original) or type(original).__name__)
        self.original = original
