"""Bridge transport - editor stdio on one side, server IPC on the other.

Messages flow:
- Editor → (stdin bytes) → FrameParser → queue → MessageRouter → (IPC) → Server
- Server → (IPC) → Content-Length framing → (stdout) → Editor

A single forwarder drains the queue, so a message never overtakes the
``initialize`` request while its SDK discovery is still running.
"""

from __future__ import annotations

import asyncio
import signal
from collections.abc import Coroutine
from enum import Enum
from typing import TYPE_CHECKING, Any

from ets_bridge.logging import get_logger
from ets_bridge.transport.framing import DEFAULT_MAX_MESSAGE_SIZE, FrameParser, LSPFramingError
from ets_bridge.transport.ipc import IpcChannelClosed

if TYPE_CHECKING:
    from ets_bridge.transport.ipc import IpcChannel
    from ets_bridge.transport.router import MessageRouter
    from ets_bridge.transport.stdio import EditorTransport

log = get_logger("bridge")

# Queue marker for editor EOF
_EOF = object()


class BridgeState(Enum):
    """Lifecycle of a bridge instance."""

    STARTING = "starting"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    TERMINATED = "terminated"


def describe_exit(returncode: int | None) -> tuple[int | None, str | None]:
    """Split a returncode into (exit code, signal name)."""
    if returncode is not None and returncode < 0:
        try:
            return None, signal.Signals(-returncode).name
        except ValueError:
            return None, str(-returncode)
    return returncode, None


class TransportBridge:
    """Relays one editor connection to one language server process."""

    def __init__(
        self,
        editor: EditorTransport,
        channel: IpcChannel,
        process: asyncio.subprocess.Process,
        router: MessageRouter,
        *,
        max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE,
    ) -> None:
        self.editor = editor
        self.channel = channel
        self.process = process
        self.router = router
        self.state = BridgeState.STARTING

        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self.parser = FrameParser(self._queue.put_nowait, max_message_size=max_message_size)

        self._stop = asyncio.Event()
        self._tasks: list[asyncio.Task[None]] = []
        self._failure: BaseException | None = None
        self._server_alive = True

    @property
    def failure(self) -> BaseException | None:
        return self._failure

    def request_stop(self, reason: str | None = None) -> None:
        """Ask the bridge to stop relaying. Safe to call more than once."""
        if reason and not self._stop.is_set():
            log.info("%s, shutting down language server...", reason)
        self._stop.set()

    def fail(self, exc: BaseException) -> None:
        """Record a fatal error and stop the bridge."""
        if self._failure is None:
            log.error("Unhandled error in bridge: %s", exc, exc_info=exc)
            self._failure = exc
        self._stop.set()

    async def run(self) -> None:
        """Relay in both directions until stopped.

        Raises:
            The first unhandled error raised by any relay task.
        """
        self.state = BridgeState.RUNNING
        self._start(self._read_editor(), "editor-reader")
        self._start(self._forward_to_server(), "server-forwarder")
        self._start(self._relay_server_messages(), "server-relay")
        self._start(self._watch_server(), "server-watch")
        if self.process.stdout is not None:
            self._start(self._relay_output(self.process.stdout, "stdout"), "server-stdout")
        if self.process.stderr is not None:
            self._start(self._relay_output(self.process.stderr, "stderr"), "server-stderr")

        log.info("Language server bridge started, beginning message forwarding")
        try:
            await self._stop.wait()
        finally:
            self.state = BridgeState.SHUTTING_DOWN
            for task in self._tasks:
                task.cancel()
            await asyncio.gather(*self._tasks, return_exceptions=True)
            self._tasks.clear()

        if self._failure is not None:
            raise self._failure

    def _start(self, coro: Coroutine[Any, Any, None], name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        task.add_done_callback(self._on_task_done)
        self._tasks.append(task)

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.fail(exc)

    async def _read_editor(self) -> None:
        """Feed editor bytes to the frame parser until EOF."""
        while True:
            chunk = await self.editor.read_chunk()
            if not chunk:
                log.info("Editor closed stdin")
                if self.parser.pending:
                    log.warning("Discarding %d bytes of incomplete input", self.parser.pending)
                    self.parser.reset()
                self._queue.put_nowait(_EOF)
                return
            self.parser.feed(chunk)

    async def _forward_to_server(self) -> None:
        """Send queued editor messages to the server, strictly in order."""
        while True:
            message = await self._queue.get()
            if message is _EOF:
                self.request_stop("Editor disconnected")
                return
            for outgoing in await self.router.route(message):
                await self._send_to_server(outgoing)

    async def _send_to_server(self, message: Any) -> None:
        if not self._server_alive:
            log.warning("Language server is not running, dropping %s", _summary(message))
            return
        try:
            await self.channel.send(message)
        except IpcChannelClosed as e:
            self._server_alive = False
            log.warning("%s, dropping %s", e, _summary(message))

    async def _relay_server_messages(self) -> None:
        """Write every server message to the editor, one frame each."""
        async for message in self.channel.messages():
            try:
                await self.editor.write_message(message)
            except LSPFramingError as e:
                log.error("Cannot frame server message: %s", e)
            except (BrokenPipeError, ConnectionResetError):
                self.request_stop("Editor stdout closed")
                return
        log.info("Language server IPC channel closed")

    async def _relay_output(self, stream: asyncio.StreamReader, name: str) -> None:
        """Log the server's own stdout/stderr; it never reaches the editor."""
        while True:
            try:
                line = await stream.readline()
            except ValueError as e:
                # Over-long line; the reader has already discarded it
                log.warning("[server %s] line dropped: %s", name, e)
                continue
            if not line:
                return
            text = line.decode("utf-8", errors="replace").rstrip()
            if not text:
                continue
            if name == "stderr":
                log.error("[server %s] %s", name, text)
            else:
                log.info("[server %s] %s", name, text)

    async def _watch_server(self) -> None:
        """Log the server's exit. The bridge does not respawn it."""
        returncode = await self.process.wait()
        self._server_alive = False
        code, signame = describe_exit(returncode)
        log.info("Language server process exited, exit code: %s, signal: %s", code, signame)


def _summary(message: Any) -> str:
    if isinstance(message, dict):
        return f"{message.get('method', 'response')} (id={message.get('id', '-')})"
    return type(message).__name__
