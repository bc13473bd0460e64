"""Tests for the Dispatcher: gating, transport resolution, outcomes."""

from __future__ import annotations

import asyncio
import logging

import pytest

from waypost.fs.dispatcher import Dispatcher
from waypost.fs.exceptions import (
    InvalidPathError,
    PermissionDeniedError,
    TransportNotFoundError,
)
from waypost.fs.mounts import MountRegistry
from waypost.fs.requests import CallContext, InboundRequest, Side
from waypost.fs.transports import Transport, TransportRegistry
from waypost.fs.types import ErrorKind

from conftest import RecordingTransport


def _external(method, args, **session):
    return CallContext(method=method, args=args, session=session)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TestTransportRegistry:
    def test_lookup_by_exact_name(self, default_transport, remote_transport):
        reg = TransportRegistry([default_transport, remote_transport])
        assert reg.get("remote") is remote_transport
        assert reg.get("Remote") is None
        assert "__default__" in reg
        assert reg.names() == ["__default__", "remote"]

    def test_duplicate_names_rejected(self):
        with pytest.raises(ValueError, match="Duplicate"):
            TransportRegistry([RecordingTransport(), RecordingTransport()])

    def test_mapping_allows_aliases(self, default_transport):
        reg = TransportRegistry({"__default__": default_transport, "filesystem": default_transport})
        assert reg.get("filesystem") is default_transport
        assert reg.list_transports() == [default_transport]

    def test_recording_transport_satisfies_protocol(self, default_transport):
        assert isinstance(default_transport, Transport)


# ---------------------------------------------------------------------------
# Successful dispatch
# ---------------------------------------------------------------------------


class TestDispatch:
    async def test_routes_to_default_transport(self, dispatcher, default_transport):
        result = await dispatcher.dispatch(_external("read", {"path": "home://docs/a.txt"}))
        assert result.success is True
        assert result.error is None
        assert result.result["query"] == "home:///docs/a.txt"
        assert default_transport.calls == [("read", "home:///docs/a.txt", {"path": "home://docs/a.txt"})]

    async def test_routes_by_mount_transport(self, dispatcher, default_transport, remote_transport):
        result = await dispatcher.dispatch(_external("scandir", {"path": "cloud:///"}))
        assert result.success is True
        assert result.result["transport"] == "remote"
        assert default_transport.calls == []

    async def test_unconfigured_protocol_uses_default(self, dispatcher, default_transport):
        result = await dispatcher.dispatch(_external("exists", {"path": "scratch:///x"}))
        assert result.success is True
        assert default_transport.calls[0][1] == "scratch:///x"

    async def test_free_space_uses_root(self, dispatcher, remote_transport):
        result = await dispatcher.dispatch(_external("freeSpace", {"root": "cloud:///"}))
        assert result.success is True
        assert remote_transport.calls == [("freeSpace", "cloud:///", {"root": "cloud:///"})]

    async def test_full_args_passed(self, dispatcher, default_transport):
        args = {"path": "home:///a.txt", "data": "data:text/plain;base64,aGk=", "raw": False}
        await dispatcher.dispatch(_external("write", args))
        assert default_transport.calls[0][2] == args

    async def test_context_passed_through(self, dispatcher, default_transport):
        ctx = _external("read", {"path": "home:///a"}, username="ann")
        await dispatcher.dispatch(ctx)
        assert default_transport.contexts == [ctx]

    async def test_unwrap_returns_payload(self, dispatcher):
        result = await dispatcher.dispatch(_external("read", {"path": "home:///a"}))
        assert result.unwrap()["method"] == "read"


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


class TestPolicy:
    async def test_disabled_mount(self, dispatcher, default_transport):
        result = await dispatcher.dispatch(_external("read", {"path": "archive:///a"}))
        assert result.success is False
        assert result.error is ErrorKind.PERMISSION_DENIED
        assert result.message == "Operation denied!"
        assert isinstance(result.exception, PermissionDeniedError)
        assert default_transport.calls == []

    async def test_read_only_allows_read(self, dispatcher):
        assert (await dispatcher.dispatch(_external("read", {"path": "shared:///a"}))).success
        assert (await dispatcher.dispatch(_external("find", {"path": "shared:///"}))).success

    @pytest.mark.parametrize("method", ["write", "upload", "delete", "mkdir"])
    async def test_read_only_denies_writes(self, dispatcher, default_transport, method):
        result = await dispatcher.dispatch(_external(method, {"path": "shared:///a"}))
        assert result.error is ErrorKind.PERMISSION_DENIED
        assert default_transport.calls == []

    async def test_group_required(self, dispatcher, default_transport):
        result = await dispatcher.dispatch(
            _external("read", {"path": "admin:///a"}, groups=["users"])
        )
        assert result.error is ErrorKind.PERMISSION_DENIED
        assert default_transport.calls == []

    async def test_group_member(self, dispatcher):
        result = await dispatcher.dispatch(
            _external("write", {"path": "admin:///a"}, groups=["users", "admins"])
        )
        assert result.success is True

    async def test_groups_from_json_session(self, dispatcher):
        result = await dispatcher.dispatch(
            _external("read", {"path": "admin:///a"}, groups='["admins"]')
        )
        assert result.success is True

    async def test_group_asked_through_authenticator(self, mounts, default_transport):
        class DirectoryAuthenticator:
            def __init__(self):
                self.asked = []

            def get_groups(self, context):
                raise AssertionError("membership is checked per group")

            def has_group(self, context, group):
                self.asked.append((context.username, group))
                return context.username == "root"

        auth = DirectoryAuthenticator()
        dispatcher = Dispatcher(mounts, TransportRegistry([default_transport]), authenticator=auth)
        denied = await dispatcher.dispatch(_external("read", {"path": "admin:///a"}, username="ann"))
        allowed = await dispatcher.dispatch(
            _external("read", {"path": "admin:///a"}, username="root")
        )
        assert denied.error is ErrorKind.PERMISSION_DENIED
        assert allowed.success is True
        assert auth.asked == [("ann", "admins"), ("root", "admins")]

    async def test_authenticator_skipped_without_requirement(self, mounts, default_transport):
        class FailingAuthenticator:
            def get_groups(self, context):
                raise AssertionError("not needed")

            def has_group(self, context, group):
                raise AssertionError("not needed")

        dispatcher = Dispatcher(
            mounts, TransportRegistry([default_transport]), authenticator=FailingAuthenticator()
        )
        assert (await dispatcher.dispatch(_external("read", {"path": "home:///a"}))).success

    async def test_external_server_root_denied(self, dispatcher, default_transport):
        result = await dispatcher.dispatch(_external("read", {"path": "$:///etc/passwd"}))
        assert result.error is ErrorKind.PERMISSION_DENIED
        assert default_transport.calls == []

    async def test_denied_before_transport_lookup(self, default_transport):
        mounts = MountRegistry.from_config(mounts={"gone": {"enabled": False, "transport": "nope"}})
        dispatcher = Dispatcher(mounts, TransportRegistry([default_transport]))
        result = await dispatcher.dispatch(_external("read", {"path": "gone:///a"}))
        assert result.error is ErrorKind.PERMISSION_DENIED


# ---------------------------------------------------------------------------
# Internal / virtual requests
# ---------------------------------------------------------------------------


class TestInternal:
    async def test_server_root_never_denied(self, dispatcher, default_transport):
        result = await dispatcher.vrequest("write", {"path": "$:///var/log.txt"})
        assert result.success is True
        assert default_transport.calls[0][1] == "$:///var/log.txt"

    async def test_server_root_ignores_mount_config(self, default_transport):
        mounts = MountRegistry.from_config(
            mounts={"$": {"enabled": False, "ro": True, "transport": "remote"}},
            groups={"$": "admins"},
        )
        dispatcher = Dispatcher(mounts, TransportRegistry([default_transport]))
        result = await dispatcher.vrequest("delete", {"path": "$:///tmp/x"})
        assert result.success is True

    async def test_bypasses_mount_policy(self, dispatcher):
        for path in ("archive:///a", "shared:///a", "admin:///a"):
            result = await dispatcher.vrequest("delete", {"path": path})
            assert result.success is True

    async def test_options_back_session(self, dispatcher, default_transport):
        await dispatcher.vrequest("read", {"path": "home:///a"}, {"username": "ann"})
        assert default_transport.contexts[0].username == "ann"
        assert default_transport.contexts[0].is_internal is True

    async def test_sub_request_keeps_policy(self, dispatcher, default_transport):
        parent = _external("read", {"path": "home:///a"}, groups=["users"])
        result = await dispatcher.request(parent, "write", {"path": "shared:///a"})
        assert result.error is ErrorKind.PERMISSION_DENIED
        result = await dispatcher.request(parent, "write", {"path": "home:///b"})
        assert result.success is True
        assert default_transport.contexts[-1].session is parent.session

    async def test_sub_request_of_internal_is_internal(self, dispatcher):
        parent = CallContext.virtual("read", {"path": "$:///"})
        result = await dispatcher.request(parent, "delete", {"path": "archive:///x"})
        assert result.success is True


# ---------------------------------------------------------------------------
# copy / move: both sides gated independently
# ---------------------------------------------------------------------------


class TestTwoPathOperations:
    def test_source_side_against_source_mount(self, dispatcher):
        ctx = _external("copy", {"src": "shared:///a", "dest": "home:///a"})
        with pytest.raises(PermissionDeniedError):
            dispatcher.authorize(ctx, Side.SOURCE)
        parsed, mount = dispatcher.authorize(ctx, Side.DESTINATION)
        assert parsed.query == "home:///a"
        assert mount.protocol == "home"

    def test_destination_side_against_destination_mount(self, dispatcher):
        ctx = _external("move", {"src": "home:///a", "dest": "shared:///a"})
        parsed, mount = dispatcher.authorize(ctx, Side.SOURCE)
        assert mount.protocol == "home"
        with pytest.raises(PermissionDeniedError):
            dispatcher.authorize(ctx, Side.DESTINATION)

    def test_group_checked_per_side(self, dispatcher):
        ctx = _external("copy", {"src": "home:///a", "dest": "admin:///a"}, groups=["users"])
        dispatcher.authorize(ctx, Side.SOURCE)
        with pytest.raises(PermissionDeniedError):
            dispatcher.authorize(ctx, Side.DESTINATION)

    @pytest.mark.parametrize(
        ("src", "dest"),
        [("shared:///a", "home:///a"), ("home:///a", "shared:///a"), ("archive:///a", "home:///a")],
    )
    async def test_either_side_denies_dispatch(self, dispatcher, default_transport, src, dest):
        result = await dispatcher.dispatch(_external("move", {"src": src, "dest": dest}))
        assert result.error is ErrorKind.PERMISSION_DENIED
        assert default_transport.calls == []

    async def test_transport_from_source_side(self, dispatcher, default_transport, remote_transport):
        result = await dispatcher.dispatch(
            _external("copy", {"src": "cloud:///a", "dest": "cloud:///b"})
        )
        assert result.success is True
        assert remote_transport.calls[0][:2] == ("copy", "cloud:///a")
        assert default_transport.calls == []

    @pytest.mark.parametrize("method", ["copy", "move"])
    async def test_cross_transport_rejected(
        self, dispatcher, default_transport, remote_transport, method
    ):
        result = await dispatcher.dispatch(
            _external(method, {"src": "cloud:///a", "dest": "home:///a"})
        )
        assert result.error is ErrorKind.UNSUPPORTED_METHOD
        assert "Cross-transport" in result.message
        assert remote_transport.calls == []
        assert default_transport.calls == []

    async def test_cross_transport_rejected_for_internal(self, dispatcher, remote_transport):
        result = await dispatcher.vrequest("move", {"src": "home:///a", "dest": "cloud:///a"})
        assert result.error is ErrorKind.UNSUPPORTED_METHOD
        assert remote_transport.calls == []

    async def test_aliased_transport_is_same_transport(self, default_transport):
        mounts = MountRegistry.from_config(mounts={"docs": {"transport": "disk"}})
        transports = TransportRegistry({"__default__": default_transport, "disk": default_transport})
        dispatcher = Dispatcher(mounts, transports)
        result = await dispatcher.dispatch(
            _external("move", {"src": "docs:///a", "dest": "home:///a"})
        )
        assert result.success is True

    async def test_destination_transport_missing(self, dispatcher, default_transport):
        result = await dispatcher.dispatch(
            _external("copy", {"src": "home:///a", "dest": "broken:///a"})
        )
        assert result.error is ErrorKind.TRANSPORT_NOT_FOUND
        assert result.message == "Cannot find VFS module for: broken:///a"
        assert default_transport.calls == []

    async def test_missing_destination(self, dispatcher, default_transport):
        result = await dispatcher.dispatch(_external("copy", {"src": "home:///a"}))
        assert result.error is ErrorKind.INVALID_PATH
        assert default_transport.calls == []


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestFailures:
    async def test_transport_not_found(self, dispatcher):
        result = await dispatcher.dispatch(_external("read", {"path": "broken://x"}))
        assert result.success is False
        assert result.error is ErrorKind.TRANSPORT_NOT_FOUND
        assert result.message == "Cannot find VFS module for: broken:///x"
        assert isinstance(result.exception, TransportNotFoundError)

    def test_resolve_raises(self, dispatcher):
        with pytest.raises(TransportNotFoundError) as exc_info:
            dispatcher.resolve(_external("read", {"path": "broken:///x"}))
        assert exc_info.value.query == "broken:///x"

    async def test_transport_error_unchanged(self, mounts):
        boom = OSError("disk on fire")
        dispatcher = Dispatcher(mounts, TransportRegistry([RecordingTransport(fail_with=boom)]))
        result = await dispatcher.dispatch(_external("read", {"path": "home:///a"}))
        assert result.success is False
        assert result.error is ErrorKind.TRANSPORT_FAILED
        assert result.exception is boom
        assert result.message == "disk on fire"
        with pytest.raises(OSError, match="disk on fire"):
            result.unwrap()

    async def test_transport_called_once(self, mounts):
        transport = RecordingTransport(fail_with=RuntimeError("nope"))
        dispatcher = Dispatcher(mounts, TransportRegistry([transport]))
        await dispatcher.dispatch(_external("write", {"path": "home:///a"}))
        assert len(transport.calls) == 1

    async def test_unknown_method(self, dispatcher, default_transport):
        result = await dispatcher.dispatch(_external("chmod", {"path": "home:///a"}))
        assert result.error is ErrorKind.UNSUPPORTED_METHOD
        assert default_transport.calls == []

    async def test_missing_protocol(self, dispatcher):
        result = await dispatcher.dispatch(_external("read", {"path": "docs/a.txt"}))
        assert result.error is ErrorKind.INVALID_PATH
        assert isinstance(result.exception, InvalidPathError)

    async def test_partial_transport(self, mounts):
        class ReadOnlyTransport:
            name = "__default__"

            async def read(self, context, path, args):
                return b""

        dispatcher = Dispatcher(mounts, TransportRegistry([ReadOnlyTransport()]))
        result = await dispatcher.dispatch(_external("mkdir", {"path": "home:///d"}))
        assert result.error is ErrorKind.UNSUPPORTED_METHOD


# ---------------------------------------------------------------------------
# HTTP entry point
# ---------------------------------------------------------------------------


class TestHandle:
    async def test_legacy_get_default_protocol(self, dispatcher, default_transport):
        result = await dispatcher.handle(InboundRequest("GET", "/get/home/docs/a.txt"))
        assert result.success is True
        assert default_transport.calls == [
            ("read", "home:///home/docs/a.txt", {"path": "home/docs/a.txt"})
        ]

    async def test_get_with_protocol(self, dispatcher, remote_transport):
        result = await dispatcher.handle(InboundRequest("GET", "get/cloud:///a.txt"))
        assert result.success is True
        assert remote_transport.calls[0][1] == "cloud:///a.txt"

    async def test_configured_default_protocol(self, mounts, default_transport):
        dispatcher = Dispatcher(
            mounts, TransportRegistry([default_transport]), default_protocol="shared"
        )
        await dispatcher.handle(InboundRequest("GET", "get/a.txt"))
        assert default_transport.calls[0][1] == "shared:///a.txt"

    async def test_post_without_protocol_rejected(self, dispatcher):
        result = await dispatcher.handle(InboundRequest("POST", "read", {"path": "a.txt"}))
        assert result.error is ErrorKind.INVALID_PATH

    async def test_post(self, dispatcher, default_transport):
        result = await dispatcher.handle(
            InboundRequest("POST", "mkdir", {"path": "home:///new"}), session={"username": "ann"}
        )
        assert result.success is True
        assert default_transport.contexts[0].username == "ann"

    async def test_unknown_endpoint(self, dispatcher):
        result = await dispatcher.handle(InboundRequest("POST", "shutdown", {}))
        assert result.error is ErrorKind.UNSUPPORTED_METHOD

    @pytest.mark.parametrize("body", [[1, 2], "text"])
    async def test_non_object_body(self, dispatcher, default_transport, body):
        result = await dispatcher.handle(InboundRequest("POST", "read", body))
        assert result.success is False
        assert result.error is ErrorKind.INVALID_PATH
        assert default_transport.calls == []

    async def test_get_is_gated(self, dispatcher):
        result = await dispatcher.handle(InboundRequest("GET", "get/archive:///a"))
        assert result.error is ErrorKind.PERMISSION_DENIED


# ---------------------------------------------------------------------------
# Streams
# ---------------------------------------------------------------------------


class TestStreams:
    async def test_read_stream(self, dispatcher, default_transport):
        ctx = _external("read", {"path": "home:///a"})
        await dispatcher.create_read_stream(ctx, "shared:///a")
        assert default_transport.calls == [("createReadStream", "shared:///a", {"path": "shared:///a"})]

    async def test_write_stream_denied_on_read_only(self, dispatcher, default_transport):
        ctx = _external("read", {"path": "home:///a"})
        with pytest.raises(PermissionDeniedError):
            await dispatcher.create_write_stream(ctx, "shared:///a")
        assert default_transport.calls == []

    async def test_write_stream(self, dispatcher, remote_transport):
        ctx = _external("read", {"path": "home:///a"})
        await dispatcher.create_write_stream(ctx, "cloud:///a")
        assert remote_transport.calls[0][0] == "createWriteStream"

    async def test_stream_transport_not_found(self, dispatcher):
        with pytest.raises(TransportNotFoundError):
            await dispatcher.create_read_stream(CallContext.virtual("read"), "broken:///a")


# ---------------------------------------------------------------------------
# Reload and lifecycle
# ---------------------------------------------------------------------------


class TestReload:
    async def test_reload_swaps_policy(self, dispatcher):
        assert (await dispatcher.dispatch(_external("write", {"path": "home:///a"}))).success
        dispatcher.reload(MountRegistry.from_config(mounts={"home": {"ro": True}}))
        result = await dispatcher.dispatch(_external("write", {"path": "home:///a"}))
        assert result.error is ErrorKind.PERMISSION_DENIED

    async def test_reload_replaces_not_merges(self, dispatcher):
        old = dispatcher.mounts
        dispatcher.reload(MountRegistry.from_config(mounts={"home": {}}))
        assert dispatcher.mounts is not old
        assert "archive" not in dispatcher.mounts
        assert (await dispatcher.dispatch(_external("read", {"path": "archive:///a"}))).success

    async def test_concurrent_requests(self, dispatcher, default_transport):
        results = await asyncio.gather(
            *(dispatcher.dispatch(_external("read", {"path": f"home:///{i}"})) for i in range(10))
        )
        assert all(r.success for r in results)
        assert len(default_transport.calls) == 10


class TestLifecycle:
    async def test_open_and_close(self, dispatcher, default_transport, remote_transport):
        await dispatcher.open()
        assert default_transport.opened and remote_transport.opened
        await dispatcher.close()
        assert default_transport.closed and remote_transport.closed

    async def test_close_failure_logged(self, mounts, caplog):
        class BadClose(RecordingTransport):
            async def close(self):
                raise RuntimeError("stuck")

        dispatcher = Dispatcher(mounts, TransportRegistry([BadClose()]))
        with caplog.at_level(logging.WARNING):
            await dispatcher.close()
        assert "Transport close failed" in caplog.text
