"""SQLModel tables used by the database transport."""

from waypost.models.files import StoredFile, StoredFileBase

__all__ = ["StoredFile", "StoredFileBase"]
