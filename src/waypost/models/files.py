"""StoredFile model for the database transport.

Provides ``StoredFileBase``, a non-table base class.  Subclass with
``table=True`` and a custom ``__tablename__`` to use a different table.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, LargeBinary
from sqlmodel import Field, SQLModel


class StoredFileBase(SQLModel):
    """Base fields for a stored entry.  Subclass with ``table=True`` for a concrete table."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    query: str = Field(index=True, unique=True)
    """Full virtual path, e.g. ``"home:///docs/a.txt"``."""
    parent: str = Field(default="", index=True)
    """Virtual path of the containing directory (empty for mount roots)."""
    name: str = Field(default="")
    is_directory: bool = Field(default=False)
    mime_type: str | None = Field(default=None)
    content: bytes | None = Field(default=None, sa_type=LargeBinary)
    size_bytes: int = Field(default=0)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )


class StoredFile(StoredFileBase, table=True):
    """Default table, ``waypost_files``."""

    __tablename__ = "waypost_files"
