"""Tests for the transport bridge."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import pytest

from ets_bridge.transport.bridge import BridgeState, TransportBridge, describe_exit
from ets_bridge.transport.framing import encode_message
from ets_bridge.transport.router import MessageRouter
from ets_bridge.types import CONFIGURATION_CHANGED, AuxiliarySdkPaths
from tests.utils import FakeChannel, FakeProcess, FakeWriter, make_editor, wait_until

SDK = "/opt/OpenHarmony/20"

INITIALIZE = {
    "jsonrpc": "2.0",
    "id": 1,
    "method": "initialize",
    "params": {"initializationOptions": {"typescript": {"tsdk": "/ts/lib"}, "ohos": {"sdkPath": SDK}}},
}
INITIALIZED = {"jsonrpc": "2.0", "method": "initialized", "params": {}}
DID_OPEN = {
    "jsonrpc": "2.0",
    "method": "textDocument/didOpen",
    "params": {"textDocument": {"uri": "file:///Index.ets", "text": "Text('你好')"}},
}


class GatedDiscover:
    """Discovery stub that blocks until the test releases it."""

    def __init__(self) -> None:
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def __call__(self, ts_root: str | None, sdk_root: str) -> AuxiliarySdkPaths:
        self.started.set()
        await self.release.wait()
        return AuxiliarySdkPaths(
            sdk_path=sdk_root,
            component_path=f"{sdk_root}/ets/component",
            loader_config_path=f"{sdk_root}/ets/build-tools/ets-loader/tsconfig.json",
            loader_path=f"{sdk_root}/ets/build-tools/ets-loader",
            base_url=f"{sdk_root}/ets",
        )


async def instant_discover(ts_root: str | None, sdk_root: str) -> AuxiliarySdkPaths:
    discover = GatedDiscover()
    discover.release.set()
    return await discover(ts_root, sdk_root)


class Harness:
    """A bridge wired to in-memory editor, channel and process doubles."""

    def __init__(self, discover: Any = instant_discover) -> None:
        self.editor, self.stdin, self.stdout = make_editor()
        self.channel = FakeChannel()
        self.process = FakeProcess()
        self.bridge = TransportBridge(
            self.editor,
            self.channel,  # type: ignore[arg-type]
            self.process,  # type: ignore[arg-type]
            MessageRouter(discover),
        )
        self.task: asyncio.Task[None] | None = None

    def start(self) -> None:
        self.task = asyncio.create_task(self.bridge.run())

    async def finish(self) -> None:
        """Close the editor's stdin and wait for the bridge to stop."""
        self.stdin.feed_eof()
        assert self.task is not None
        await asyncio.wait_for(self.task, timeout=5.0)

    @property
    def written(self) -> FakeWriter:
        return self.stdout


@pytest.fixture
async def harness() -> Harness:
    return Harness()


class TestEditorToServer:
    """Tests for the editor → server direction."""

    @pytest.mark.asyncio
    async def test_forwards_parsed_messages(self, harness: Harness) -> None:
        harness.start()
        harness.stdin.feed_data(encode_message(INITIALIZED) + encode_message(DID_OPEN))

        await wait_until(lambda: len(harness.channel.sent) == 2)
        assert harness.channel.sent == [INITIALIZED, DID_OPEN]
        await harness.finish()

    @pytest.mark.asyncio
    async def test_fragmented_input(self, harness: Harness) -> None:
        harness.start()
        data = encode_message(DID_OPEN)
        for i in range(0, len(data), 7):
            harness.stdin.feed_data(data[i : i + 7])
            await asyncio.sleep(0)

        await wait_until(lambda: len(harness.channel.sent) == 1)
        assert harness.channel.sent == [DID_OPEN]
        await harness.finish()

    @pytest.mark.asyncio
    async def test_messages_wait_for_initialize(self) -> None:
        """Nothing overtakes initialize while SDK discovery is pending."""
        discover = GatedDiscover()
        harness = Harness(discover)
        harness.start()

        harness.stdin.feed_data(
            encode_message(INITIALIZE) + encode_message(INITIALIZED) + encode_message(DID_OPEN)
        )
        await asyncio.wait_for(discover.started.wait(), timeout=5.0)
        await asyncio.sleep(0.05)
        assert harness.channel.sent == []

        discover.release.set()
        await wait_until(lambda: len(harness.channel.sent) == 4)

        augmented, follow_up, initialized, did_open = harness.channel.sent
        assert augmented["method"] == "initialize"
        assert augmented["params"]["initializationOptions"]["ohos"]["sdkPath"] == SDK
        assert follow_up["method"] == CONFIGURATION_CHANGED
        assert initialized == INITIALIZED
        assert did_open == DID_OPEN
        await harness.finish()

    @pytest.mark.asyncio
    async def test_corrupt_frame_does_not_stop_relay(self, harness: Harness) -> None:
        harness.start()
        harness.stdin.feed_data(b"Content-Length: 5\r\n\r\n{bad}" + encode_message(INITIALIZED))

        await wait_until(lambda: len(harness.channel.sent) == 1)
        assert harness.channel.sent == [INITIALIZED]
        await harness.finish()


class TestServerToEditor:
    """Tests for the server → editor direction."""

    @pytest.mark.asyncio
    async def test_one_frame_per_message(self, harness: Harness) -> None:
        harness.start()
        responses = [
            {"jsonrpc": "2.0", "id": 1, "result": {"capabilities": {}}},
            {"jsonrpc": "2.0", "method": "textDocument/publishDiagnostics", "params": {"message": "类型错误"}},
        ]
        for response in responses:
            harness.channel.inbound.put_nowait(response)

        expected = b"".join(encode_message(r) for r in responses)
        await wait_until(lambda: bytes(harness.written.data) == expected)
        assert harness.written.messages() == responses
        await harness.finish()

    @pytest.mark.asyncio
    async def test_server_stderr_is_logged_not_relayed(
        self, harness: Harness, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.INFO, logger="ets_bridge"):
            harness.start()
            harness.process.stderr.feed_data(b"TypeError: boom\n")
            harness.process.stdout.feed_data(b"server booted\n")
            await wait_until(lambda: "boom" in caplog.text and "server booted" in caplog.text)

        assert harness.written.data == b""
        await harness.finish()

    @pytest.mark.asyncio
    async def test_overlong_server_output_line(
        self, harness: Harness, caplog: pytest.LogCaptureFixture
    ) -> None:
        """A server log line past the reader limit is dropped; relaying continues."""
        with caplog.at_level(logging.INFO, logger="ets_bridge"):
            harness.start()
            harness.process.stdout.feed_data(b"x" * 70000 + b"\n")
            harness.process.stdout.feed_data(b"still talking\n")
            harness.stdin.feed_data(encode_message(INITIALIZED))

            await wait_until(lambda: "still talking" in caplog.text)
            await wait_until(lambda: len(harness.channel.sent) == 1)

        assert "line dropped" in caplog.text
        assert harness.channel.sent == [INITIALIZED]
        assert harness.bridge.failure is None
        await harness.finish()
        assert harness.bridge.failure is None

    @pytest.mark.asyncio
    async def test_lone_surrogate_reaches_editor(self, harness: Harness) -> None:
        """Node escapes unpaired surrogates; the editor still gets the response."""
        response = json.loads('{"jsonrpc":"2.0","id":1,"result":"\\ud83d"}')
        harness.start()
        harness.channel.inbound.put_nowait(response)

        await wait_until(lambda: len(harness.written.data) > 0)
        assert b"\\ud83d" in bytes(harness.written.data)
        assert harness.written.messages() == [response]
        await harness.finish()


class TestLifecycle:
    """Tests for bridge state and shutdown."""

    @pytest.mark.asyncio
    async def test_editor_eof_stops_bridge(self, harness: Harness) -> None:
        harness.start()
        await wait_until(lambda: harness.bridge.state is BridgeState.RUNNING)
        harness.stdin.feed_data(encode_message(INITIALIZED))
        await harness.finish()

        assert harness.channel.sent == [INITIALIZED]
        assert harness.bridge.state is BridgeState.SHUTTING_DOWN

    @pytest.mark.asyncio
    async def test_request_stop(self, harness: Harness) -> None:
        harness.start()
        await wait_until(lambda: harness.bridge.state is BridgeState.RUNNING)
        harness.bridge.request_stop("Received SIGTERM signal")

        assert harness.task is not None
        await asyncio.wait_for(harness.task, timeout=5.0)
        assert harness.bridge.failure is None

    @pytest.mark.asyncio
    async def test_server_exit_is_observed_not_fatal(
        self, harness: Harness, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.INFO, logger="ets_bridge"):
            harness.start()
            harness.process.exit(-15)
            await wait_until(lambda: "signal: SIGTERM" in caplog.text)

            harness.stdin.feed_data(encode_message(DID_OPEN))
            await wait_until(lambda: "dropping textDocument/didOpen" in caplog.text)

        assert harness.channel.sent == []
        assert harness.bridge.state is BridgeState.RUNNING
        await harness.finish()

    @pytest.mark.asyncio
    async def test_closed_channel_drops_messages(self, harness: Harness) -> None:
        harness.channel.broken = True
        harness.start()
        harness.stdin.feed_data(encode_message(INITIALIZED) + encode_message(DID_OPEN))
        await asyncio.sleep(0.05)

        assert harness.channel.sent == []
        await harness.finish()

    @pytest.mark.asyncio
    async def test_unhandled_error_is_raised(self) -> None:
        async def broken_discover(ts_root: str | None, sdk_root: str) -> AuxiliarySdkPaths:
            raise RuntimeError("disk on fire")

        harness = Harness(broken_discover)
        harness.start()
        harness.stdin.feed_data(encode_message(INITIALIZE))

        assert harness.task is not None
        with pytest.raises(RuntimeError, match="disk on fire"):
            await asyncio.wait_for(harness.task, timeout=5.0)
        assert isinstance(harness.bridge.failure, RuntimeError)


class TestDescribeExit:
    """Tests for describe_exit."""

    def test_exit_code(self) -> None:
        assert describe_exit(3) == (3, None)

    def test_signal(self) -> None:
        assert describe_exit(-9) == (None, "SIGKILL")

    def test_still_running(self) -> None:
        assert describe_exit(None) == (None, None)
