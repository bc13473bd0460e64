"""Shared fixtures for waypost tests."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from waypost.fs.dispatcher import Dispatcher
from waypost.fs.mounts import MountRegistry
from waypost.fs.transports import TransportRegistry

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from sqlalchemy.ext.asyncio import AsyncEngine


def _op(method: str):
    async def operation(self, context, path, args):
        return await self._record(method, context, path, args)

    operation.__name__ = method
    return operation


class RecordingTransport:
    """Transport double that records every call it receives."""

    def __init__(self, name: str = "__default__", fail_with: Exception | None = None) -> None:
        self.name = name
        self.fail_with = fail_with
        self.calls: list[tuple[str, str, dict[str, Any]]] = []
        self.contexts: list[Any] = []
        self.opened = False
        self.closed = False

    async def open(self) -> None:
        self.opened = True

    async def close(self) -> None:
        self.closed = True

    async def _record(self, method, context, path, args):
        self.calls.append((method, path.query, dict(args)))
        self.contexts.append(context)
        if self.fail_with is not None:
            raise self.fail_with
        return {"transport": self.name, "method": method, "query": path.query}

    read = _op("read")
    write = _op("write")
    upload = _op("upload")
    delete = _op("delete")
    copy = _op("copy")
    move = _op("move")
    mkdir = _op("mkdir")
    find = _op("find")
    fileinfo = _op("fileinfo")
    scandir = _op("scandir")
    free_space = _op("freeSpace")
    exists = _op("exists")
    create_read_stream = _op("createReadStream")
    create_write_stream = _op("createWriteStream")


@pytest.fixture
def default_transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def remote_transport() -> RecordingTransport:
    return RecordingTransport(name="remote")


@pytest.fixture
def mounts() -> MountRegistry:
    """A mix of writable, read-only, disabled and group-restricted mounts."""
    return MountRegistry.from_config(
        mounts={
            "home": {"destination": "/srv/%USERNAME%"},
            "shared": {"ro": True},
            "archive": {"enabled": False},
            "admin": {},
            "cloud": {"transport": "remote"},
            "broken": {"transport": "missing"},
        },
        groups={"admin": "admins"},
    )


@pytest.fixture
def dispatcher(
    mounts: MountRegistry,
    default_transport: RecordingTransport,
    remote_transport: RecordingTransport,
) -> Dispatcher:
    return Dispatcher(mounts, TransportRegistry([default_transport, remote_transport]))


@pytest.fixture
async def async_engine() -> AsyncIterator[AsyncEngine]:
    """Async in-memory SQLite engine shared across sessions."""
    eng = create_async_engine("sqlite+aiosqlite://", echo=False, poolclass=StaticPool)
    yield eng
    await eng.dispose()
