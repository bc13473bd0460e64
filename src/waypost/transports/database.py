"""DatabaseTransport — mounts stored in a SQL table."""

from __future__ import annotations

import fnmatch
import logging
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import SQLModel, select

from waypost.fs.paths import parse_virtual_path
from waypost.fs.types import FileStat
from waypost.fs.utils import decode_payload, guess_mime_type, to_data_url

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, AsyncIterator, Mapping

    from sqlalchemy.ext.asyncio import AsyncEngine

    from waypost.fs.paths import VirtualPath
    from waypost.fs.requests import CallContext
    from waypost.models.files import StoredFileBase

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024
DEFAULT_FIND_LIMIT = 1000


def _is_root(path: VirtualPath) -> bool:
    return path.path == "/"


def _descendant_prefix(path: VirtualPath) -> str:
    return path.query if path.query.endswith("/") else path.query + "/"


class DatabaseWriteStream:
    """Buffers written bytes and stores them when closed."""

    def __init__(self, transport: DatabaseTransport, path: VirtualPath) -> None:
        self._transport = transport
        self._path = path
        self._chunks: list[bytes] = []
        self.closed = False

    async def write(self, data: bytes) -> int:
        if self.closed:
            raise ValueError("write to closed stream")
        self._chunks.append(bytes(data))
        return len(data)

    async def close(self) -> None:
        if self.closed:
            return
        async with self._transport._session() as session:
            await self._transport._store(session, self._path, b"".join(self._chunks))
        self.closed = True
        self._chunks.clear()

    async def __aenter__(self) -> DatabaseWriteStream:
        return self

    async def __aexit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        await self.close()


class DatabaseTransport:
    """Database-backed transport, sessions opened per operation.

    Every entry is one row keyed by its full virtual path, so any number
    of mounts can share a table.  Mount roots always exist and are never
    stored.  Works with any async SQLAlchemy driver (aiosqlite, asyncpg).

    Each operation runs in its own session: committed on success,
    rolled back on error.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        *,
        name: str = "database",
        file_model: type[StoredFileBase] | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        from waypost.models.files import StoredFile

        self.name = name
        self.chunk_size = chunk_size
        self._engine = engine
        self._model: type[StoredFileBase] = file_model or StoredFile  # type: ignore[assignment]
        self._session_factory = async_sessionmaker(
            engine, class_=AsyncSession, expire_on_commit=False
        )

    @property
    def file_model(self) -> type[StoredFileBase]:
        return self._model

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Create the file table if it does not exist."""
        table = self._model.__table__  # type: ignore[attr-defined]
        async with self._engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all, tables=[table])
        logger.debug("Database transport %s ready (table %s)", self.name, table.name)

    async def close(self) -> None:
        """The engine belongs to the caller; nothing to release."""

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession]:
        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    # ------------------------------------------------------------------
    # Row helpers
    # ------------------------------------------------------------------

    async def _get(self, session: AsyncSession, query: str) -> StoredFileBase | None:
        model = self._model
        result = await session.execute(select(model).where(model.query == query))  # type: ignore[arg-type]
        return result.scalar_one_or_none()

    async def _require(self, session: AsyncSession, path: VirtualPath) -> StoredFileBase:
        entry = await self._get(session, path.query)
        if entry is None:
            raise FileNotFoundError(f"No such file or directory: {path.query}")
        return entry

    async def _require_dir(self, session: AsyncSession, path: VirtualPath) -> None:
        if _is_root(path):
            return
        entry = await self._require(session, path)
        if not entry.is_directory:
            raise NotADirectoryError(f"Not a directory: {path.query}")

    async def _descendants(self, session: AsyncSession, path: VirtualPath) -> list[StoredFileBase]:
        model = self._model
        result = await session.execute(
            select(model).where(
                model.query.startswith(_descendant_prefix(path), autoescape=True)  # type: ignore[attr-defined]
            )
        )
        return list(result.scalars().all())

    async def _store(self, session: AsyncSession, path: VirtualPath, content: bytes) -> StoredFileBase:
        """Create or replace the file at *path* with *content*."""
        if _is_root(path):
            raise IsADirectoryError(f"Is a directory: {path.query}")
        await self._require_dir(session, path.parent)

        entry = await self._get(session, path.query)
        if entry is None:
            entry = self._model(
                query=path.query,
                parent=path.parent.query,
                name=path.name,
                mime_type=guess_mime_type(path.name),
            )
        elif entry.is_directory:
            raise IsADirectoryError(f"Is a directory: {path.query}")

        entry.content = content
        entry.size_bytes = len(content)
        entry.updated_at = datetime.now(UTC)
        session.add(entry)
        await session.flush()
        return entry

    def _to_stat(self, entry: StoredFileBase) -> FileStat:
        return FileStat(
            path=entry.query,
            filename=entry.name,
            type="dir" if entry.is_directory else "file",
            size=entry.size_bytes,
            mime=entry.mime_type,
            ctime=entry.created_at,
            mtime=entry.updated_at,
        )

    @staticmethod
    def _root_stat(path: VirtualPath) -> FileStat:
        return FileStat(path=path.query, filename=path.protocol, type="dir")

    # ------------------------------------------------------------------
    # Read Operations
    # ------------------------------------------------------------------

    async def read(
        self, context: CallContext, path: VirtualPath, args: Mapping[str, Any]
    ) -> bytes | str:
        async with self._session() as session:
            if _is_root(path):
                raise IsADirectoryError(f"Is a directory: {path.query}")
            entry = await self._require(session, path)
        if entry.is_directory:
            raise IsADirectoryError(f"Is a directory: {path.query}")

        content = entry.content or b""
        if args.get("encoding") == "dataurl":
            return to_data_url(content, entry.mime_type or guess_mime_type(entry.name))
        return content

    async def exists(self, context: CallContext, path: VirtualPath, args: Mapping[str, Any]) -> bool:
        if _is_root(path):
            return True
        async with self._session() as session:
            return await self._get(session, path.query) is not None

    async def fileinfo(
        self, context: CallContext, path: VirtualPath, args: Mapping[str, Any]
    ) -> FileStat:
        if _is_root(path):
            return self._root_stat(path)
        async with self._session() as session:
            entry = await self._require(session, path)
        return self._to_stat(entry)

    async def scandir(
        self, context: CallContext, path: VirtualPath, args: Mapping[str, Any]
    ) -> list[FileStat]:
        model = self._model
        async with self._session() as session:
            await self._require_dir(session, path)
            result = await session.execute(
                select(model).where(model.parent == path.query)  # type: ignore[arg-type]
            )
            entries = [self._to_stat(e) for e in result.scalars().all()]
        entries.sort(key=lambda e: (not e.is_directory, e.filename.lower()))
        return entries

    async def find(
        self, context: CallContext, path: VirtualPath, args: Mapping[str, Any]
    ) -> list[FileStat]:
        """Same matching rules as the local disk transport."""
        query = str(args.get("query") or "*").casefold()
        if not any(ch in query for ch in "*?["):
            query = f"*{query}*"
        recursive = args.get("recursive", True) is not False
        limit = int(args.get("limit") or DEFAULT_FIND_LIMIT)

        async with self._session() as session:
            await self._require_dir(session, path)
            candidates = await self._descendants(session, path)

        found: list[FileStat] = []
        for entry in sorted(candidates, key=lambda e: e.query):
            if not recursive and entry.parent != path.query:
                continue
            if fnmatch.fnmatchcase(entry.name.casefold(), query):
                found.append(self._to_stat(entry))
                if len(found) >= limit:
                    break
        return found

    async def free_space(
        self, context: CallContext, path: VirtualPath, args: Mapping[str, Any]
    ) -> int | None:
        """Unbounded: the database reports no quota."""
        return None

    # ------------------------------------------------------------------
    # Write Operations
    # ------------------------------------------------------------------

    async def write(self, context: CallContext, path: VirtualPath, args: Mapping[str, Any]) -> bool:
        content = decode_payload(args.get("data"), raw=bool(args.get("raw")))
        async with self._session() as session:
            await self._store(session, path, content)
        return True

    async def upload(
        self, context: CallContext, path: VirtualPath, args: Mapping[str, Any]
    ) -> FileStat:
        filename = args.get("filename")
        if not filename or "/" in filename:
            raise ValueError(f"Invalid upload filename: {filename!r}")

        target = path.join(filename)
        content = decode_payload(args.get("data"), raw=bool(args.get("raw")))
        async with self._session() as session:
            if not args.get("overwrite") and await self._get(session, target.query) is not None:
                raise FileExistsError(f"File already exists: {target.query}")
            entry = await self._store(session, target, content)
            return self._to_stat(entry)

    async def delete(self, context: CallContext, path: VirtualPath, args: Mapping[str, Any]) -> bool:
        if _is_root(path):
            raise PermissionError(f"Refusing to delete mount root: {path.query}")
        async with self._session() as session:
            entry = await self._require(session, path)
            if entry.is_directory:
                for child in await self._descendants(session, path):
                    await session.delete(child)
            await session.delete(entry)
        return True

    async def _prepare_transfer(
        self, session: AsyncSession, path: VirtualPath, args: Mapping[str, Any]
    ) -> tuple[StoredFileBase, VirtualPath]:
        if _is_root(path):
            raise PermissionError(f"Cannot transfer mount root: {path.query}")
        dest = parse_virtual_path(args.get("dest"))
        if _is_root(dest) or dest.query == path.query:
            raise FileExistsError(f"Destination already exists: {dest.query}")
        if dest.query.startswith(_descendant_prefix(path)):
            raise ValueError(f"Cannot place {path.query} inside itself")

        entry = await self._require(session, path)
        await self._require_dir(session, dest.parent)
        existing = await self._get(session, dest.query)
        if existing is not None:
            if not args.get("overwrite") or existing.is_directory or entry.is_directory:
                raise FileExistsError(f"Destination already exists: {dest.query}")
            await session.delete(existing)
            await session.flush()
        return entry, dest

    async def copy(self, context: CallContext, path: VirtualPath, args: Mapping[str, Any]) -> bool:
        async with self._session() as session:
            entry, dest = await self._prepare_transfer(session, path, args)
            children = await self._descendants(session, path) if entry.is_directory else []
            for source in [entry, *children]:
                suffix = source.query[len(path.query) :]
                target = parse_virtual_path(dest.query + suffix)
                session.add(
                    self._model(
                        query=target.query,
                        parent=target.parent.query,
                        name=target.name,
                        is_directory=source.is_directory,
                        mime_type=source.mime_type,
                        content=source.content,
                        size_bytes=source.size_bytes,
                    )
                )
        return True

    async def move(self, context: CallContext, path: VirtualPath, args: Mapping[str, Any]) -> bool:
        async with self._session() as session:
            entry, dest = await self._prepare_transfer(session, path, args)
            children = await self._descendants(session, path) if entry.is_directory else []
            now = datetime.now(UTC)
            for source in [entry, *children]:
                target = parse_virtual_path(dest.query + source.query[len(path.query) :])
                source.query = target.query
                source.parent = target.parent.query
                source.name = target.name
                source.updated_at = now
                session.add(source)
        return True

    async def mkdir(self, context: CallContext, path: VirtualPath, args: Mapping[str, Any]) -> bool:
        """Create a directory; ``parents`` creates missing ancestors."""
        if _is_root(path):
            raise FileExistsError(f"Directory already exists: {path.query}")

        async with self._session() as session:
            if await self._get(session, path.query) is not None:
                raise FileExistsError(f"Directory already exists: {path.query}")

            missing = [path]
            if args.get("parents"):
                current = path.parent
                while not _is_root(current) and await self._get(session, current.query) is None:
                    missing.append(current)
                    current = current.parent
                await self._require_dir(session, current)
            else:
                await self._require_dir(session, path.parent)

            for directory in reversed(missing):
                session.add(
                    self._model(
                        query=directory.query,
                        parent=directory.parent.query,
                        name=directory.name,
                        is_directory=True,
                    )
                )
        return True

    # ------------------------------------------------------------------
    # Streams
    # ------------------------------------------------------------------

    async def create_read_stream(
        self, context: CallContext, path: VirtualPath, args: Mapping[str, Any]
    ) -> AsyncIterator[bytes]:
        content = await self.read(context, path, {})
        return self._iter_chunks(content)

    async def _iter_chunks(self, content: bytes) -> AsyncIterator[bytes]:
        for start in range(0, len(content), self.chunk_size):
            yield content[start : start + self.chunk_size]

    async def create_write_stream(
        self, context: CallContext, path: VirtualPath, args: Mapping[str, Any]
    ) -> DatabaseWriteStream:
        async with self._session() as session:
            await self._require_dir(session, path.parent)
        return DatabaseWriteStream(self, path)
