"""Shared test doubles for the bridge tests."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from typing import Any

from ets_bridge.transport.framing import FrameParser
from ets_bridge.transport.ipc import IpcChannelClosed
from ets_bridge.transport.stdio import EditorTransport


async def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
    """Poll ``predicate`` until it holds or ``timeout`` seconds pass."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


class FakeWriter:
    """Collects everything written to the editor's stdout."""

    def __init__(self) -> None:
        self.data = bytearray()
        self.closed = False

    def write(self, data: bytes) -> None:
        self.data.extend(data)

    async def drain(self) -> None:
        pass

    def close(self) -> None:
        self.closed = True

    async def wait_closed(self) -> None:
        pass

    def messages(self) -> list[Any]:
        """Decode the framed output back into messages."""
        parsed: list[Any] = []
        FrameParser(parsed.append).feed(bytes(self.data))
        return parsed


def make_editor() -> tuple[EditorTransport, asyncio.StreamReader, FakeWriter]:
    """Editor transport whose stdin is fed by the test and stdout is captured."""
    reader = asyncio.StreamReader()
    writer = FakeWriter()
    return EditorTransport(reader=reader, writer=writer), reader, writer  # type: ignore[arg-type]


class FakeChannel:
    """In-memory stand-in for :class:`IpcChannel`."""

    def __init__(self) -> None:
        self.sent: list[Any] = []
        self.inbound: asyncio.Queue[Any] = asyncio.Queue()
        self.closed = False
        self.broken = False

    async def send(self, message: Any) -> None:
        if self.broken:
            raise IpcChannelClosed("IPC channel is closed")
        self.sent.append(message)

    async def messages(self) -> AsyncIterator[Any]:
        while True:
            message = await self.inbound.get()
            if message is None:
                return
            yield message

    async def close(self) -> None:
        self.closed = True


class FakeProcess:
    """Minimal asyncio.subprocess.Process double."""

    def __init__(self) -> None:
        self.pid = 4242
        self.returncode: int | None = None
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self._exited = asyncio.Event()

    def exit(self, returncode: int) -> None:
        self.returncode = returncode
        self.stdout.feed_eof()
        self.stderr.feed_eof()
        self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        assert self.returncode is not None
        return self.returncode
