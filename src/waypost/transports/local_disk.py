"""LocalDiskTransport — mounts served from host directories."""

from __future__ import annotations

import asyncio
import fnmatch
import logging
import os
import shutil
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, BinaryIO

from waypost.fs.mounts import DEFAULT_TRANSPORT, WILDCARD
from waypost.fs.paths import ROOT_PROTOCOL, parse_virtual_path
from waypost.fs.types import FileStat
from waypost.fs.utils import decode_payload, expand_destination, guess_mime_type, to_data_url

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Mapping

    from waypost.fs.paths import VirtualPath
    from waypost.fs.requests import CallContext

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024
DEFAULT_FIND_LIMIT = 1000


class FileWriteStream:
    """Async wrapper around a binary file handle opened for writing."""

    def __init__(self, handle: BinaryIO) -> None:
        self._handle = handle

    @property
    def closed(self) -> bool:
        return self._handle.closed

    async def write(self, data: bytes) -> int:
        return await asyncio.to_thread(self._handle.write, data)

    async def close(self) -> None:
        if not self._handle.closed:
            await asyncio.to_thread(self._handle.close)

    async def __aenter__(self) -> FileWriteStream:
        return self

    async def __aexit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        await self.close()


class LocalDiskTransport:
    """Serves each mount from a directory on the host filesystem.

    ``roots`` maps a protocol to a destination template (see
    ``expand_destination``); a ``*`` entry serves every protocol without
    its own.  The ``$`` protocol maps to ``server_root``.

    Security: ``_resolve()`` keeps every path inside its mount directory.
    All blocking calls run in worker threads.
    """

    def __init__(
        self,
        roots: Mapping[str, str] | None = None,
        *,
        server_root: Path | str = ".",
        name: str = DEFAULT_TRANSPORT,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self.name = name
        self.roots = dict(roots or {})
        self.server_root = Path(server_root).resolve()
        self.chunk_size = chunk_size

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def open(self) -> None:
        logger.debug("Local disk transport %s serving %s", self.name, sorted(self.roots))

    async def close(self) -> None:
        pass

    # =========================================================================
    # Path Resolution & Security
    # =========================================================================

    def _host_dir(self, context: CallContext, protocol: str) -> Path:
        if protocol == ROOT_PROTOCOL:
            return self.server_root

        template = self.roots.get(protocol) or self.roots.get(WILDCARD)
        if not template:
            raise FileNotFoundError(f"No destination configured for mount: {protocol}")
        expanded = expand_destination(
            template,
            protocol=protocol,
            username=context.username,
            server_root=str(self.server_root),
        )
        return Path(expanded).resolve()

    def _resolve(self, context: CallContext, path: VirtualPath) -> Path:
        """Map a virtual path onto the host, refusing traversal outside the mount."""
        host_dir = self._host_dir(context, path.protocol)
        rel = path.path.lstrip("/")
        if not rel:
            return host_dir

        resolved = (host_dir / rel).resolve()
        try:
            resolved.relative_to(host_dir)
        except ValueError:
            raise PermissionError(
                f"Path traversal detected: {path.query} resolves outside mount directory"
            ) from None
        return resolved

    def _stat(self, path: VirtualPath, real: Path) -> FileStat:
        st = real.stat()
        is_dir = real.is_dir()
        return FileStat(
            path=path.query,
            filename=path.name or path.protocol,
            type="dir" if is_dir else "file",
            size=0 if is_dir else st.st_size,
            mime=None if is_dir else guess_mime_type(real.name),
            ctime=datetime.fromtimestamp(st.st_ctime, UTC),
            mtime=datetime.fromtimestamp(st.st_mtime, UTC),
        )

    # =========================================================================
    # Read Operations
    # =========================================================================

    async def read(
        self, context: CallContext, path: VirtualPath, args: Mapping[str, Any]
    ) -> bytes | str:
        """Return file content; ``encoding="dataurl"`` returns a data URL."""
        real = self._resolve(context, path)
        content = await asyncio.to_thread(real.read_bytes)
        if args.get("encoding") == "dataurl":
            return to_data_url(content, guess_mime_type(real.name))
        return content

    async def exists(self, context: CallContext, path: VirtualPath, args: Mapping[str, Any]) -> bool:
        real = self._resolve(context, path)
        return await asyncio.to_thread(real.exists)

    async def fileinfo(
        self, context: CallContext, path: VirtualPath, args: Mapping[str, Any]
    ) -> FileStat:
        real = self._resolve(context, path)
        return await asyncio.to_thread(self._stat, path, real)

    async def scandir(
        self, context: CallContext, path: VirtualPath, args: Mapping[str, Any]
    ) -> list[FileStat]:
        """List a directory, directories first, then by name."""
        real = self._resolve(context, path)

        def _scan() -> list[FileStat]:
            entries = [self._stat(path.join(child.name), child) for child in real.iterdir()]
            entries.sort(key=lambda e: (not e.is_directory, e.filename.lower()))
            return entries

        return await asyncio.to_thread(_scan)

    async def find(
        self, context: CallContext, path: VirtualPath, args: Mapping[str, Any]
    ) -> list[FileStat]:
        """Find entries below *path* whose name matches ``query``.

        ``query`` is a case-insensitive glob; a plain word matches as a
        substring.  ``recursive`` (default true) and ``limit`` are honoured.
        """
        real = self._resolve(context, path)
        query = str(args.get("query") or "*").casefold()
        if not any(ch in query for ch in "*?["):
            query = f"*{query}*"
        recursive = args.get("recursive", True) is not False
        limit = int(args.get("limit") or DEFAULT_FIND_LIMIT)

        def _find() -> list[FileStat]:
            found: list[FileStat] = []
            candidates = real.rglob("*") if recursive else real.iterdir()
            for child in sorted(candidates):
                if not fnmatch.fnmatchcase(child.name.casefold(), query):
                    continue
                rel = child.relative_to(real).as_posix()
                found.append(self._stat(path.join(rel), child))
                if len(found) >= limit:
                    break
            return found

        return await asyncio.to_thread(_find)

    async def free_space(
        self, context: CallContext, path: VirtualPath, args: Mapping[str, Any]
    ) -> int:
        real = self._resolve(context, path)
        usage = await asyncio.to_thread(shutil.disk_usage, real)
        return usage.free

    # =========================================================================
    # Write Operations
    # =========================================================================

    async def write(self, context: CallContext, path: VirtualPath, args: Mapping[str, Any]) -> bool:
        """Write ``data`` (a data URL unless ``raw``) to *path*."""
        real = self._resolve(context, path)
        content = decode_payload(args.get("data"), raw=bool(args.get("raw")))
        await asyncio.to_thread(real.write_bytes, content)
        return True

    async def upload(
        self, context: CallContext, path: VirtualPath, args: Mapping[str, Any]
    ) -> FileStat:
        """Store ``data`` as ``filename`` inside the directory *path*."""
        filename = args.get("filename")
        if not filename or "/" in filename:
            raise ValueError(f"Invalid upload filename: {filename!r}")

        target = path.join(filename)
        real = self._resolve(context, target)
        if not args.get("overwrite") and await asyncio.to_thread(real.exists):
            raise FileExistsError(f"File already exists: {target.query}")

        content = decode_payload(args.get("data"), raw=bool(args.get("raw")))
        await asyncio.to_thread(real.write_bytes, content)
        return await asyncio.to_thread(self._stat, target, real)

    async def delete(self, context: CallContext, path: VirtualPath, args: Mapping[str, Any]) -> bool:
        real = self._resolve(context, path)
        if not path.path.strip("/"):
            raise PermissionError(f"Refusing to delete mount root: {path.query}")

        def _delete() -> None:
            if real.is_dir() and not real.is_symlink():
                shutil.rmtree(real)
            else:
                real.unlink()

        await asyncio.to_thread(_delete)
        return True

    async def _destination(
        self, context: CallContext, path: VirtualPath, src: Path, args: Mapping[str, Any]
    ) -> Path:
        """Host path of ``dest``.  Only a file may replace an existing file."""
        dest = parse_virtual_path(args.get("dest"))
        real = self._resolve(context, dest)

        def _check() -> None:
            if not src.exists():
                raise FileNotFoundError(f"No such file or directory: {path.query}")
            if src.is_dir() and real != src and real.is_relative_to(src):
                raise ValueError(f"Cannot place {path.query} inside itself")
            if not real.exists():
                return
            if not args.get("overwrite") or real.is_dir() or src.is_dir():
                raise FileExistsError(f"Destination already exists: {dest.query}")

        await asyncio.to_thread(_check)
        return real

    async def copy(self, context: CallContext, path: VirtualPath, args: Mapping[str, Any]) -> bool:
        """Copy *path* to ``dest``.  Directories are copied recursively."""
        src = self._resolve(context, path)
        dest = await self._destination(context, path, src, args)

        def _copy() -> None:
            if src.is_dir():
                shutil.copytree(src, dest)
            else:
                shutil.copy2(src, dest)

        await asyncio.to_thread(_copy)
        return True

    async def move(self, context: CallContext, path: VirtualPath, args: Mapping[str, Any]) -> bool:
        src = self._resolve(context, path)
        dest = await self._destination(context, path, src, args)
        await asyncio.to_thread(shutil.move, os.fspath(src), os.fspath(dest))
        return True

    async def mkdir(self, context: CallContext, path: VirtualPath, args: Mapping[str, Any]) -> bool:
        real = self._resolve(context, path)
        await asyncio.to_thread(real.mkdir, parents=bool(args.get("parents")))
        return True

    # =========================================================================
    # Streams
    # =========================================================================

    async def create_read_stream(
        self, context: CallContext, path: VirtualPath, args: Mapping[str, Any]
    ) -> AsyncIterator[bytes]:
        real = self._resolve(context, path)
        handle = await asyncio.to_thread(real.open, "rb")
        return self._iter_chunks(handle)

    async def _iter_chunks(self, handle: BinaryIO) -> AsyncIterator[bytes]:
        try:
            while True:
                chunk = await asyncio.to_thread(handle.read, self.chunk_size)
                if not chunk:
                    break
                yield chunk
        finally:
            await asyncio.to_thread(handle.close)

    async def create_write_stream(
        self, context: CallContext, path: VirtualPath, args: Mapping[str, Any]
    ) -> FileWriteStream:
        real = self._resolve(context, path)
        handle = await asyncio.to_thread(real.open, "wb")
        return FileWriteStream(handle)
