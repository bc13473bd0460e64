"""Concrete transports for local disk and SQL storage."""

from waypost.transports.database import DatabaseTransport, DatabaseWriteStream
from waypost.transports.local_disk import FileWriteStream, LocalDiskTransport

__all__ = [
    "DatabaseTransport",
    "DatabaseWriteStream",
    "FileWriteStream",
    "LocalDiskTransport",
]
