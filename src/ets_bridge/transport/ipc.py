"""Node.js IPC channel to the language server.

A Node process started with ``NODE_CHANNEL_FD`` treats that file descriptor
as its ``process.send`` / ``process.on("message")`` channel. In ``json``
serialization mode every message is one JSON document followed by a
newline, so message boundaries survive without any Content-Length framing.
The bridge keeps one end of a Unix socket pair and passes the other to the
child.
"""

from __future__ import annotations

import asyncio
import json
import os
import socket
import sys
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ets_bridge.logging import TRACE, get_logger
from ets_bridge.transport.framing import dump_json

if TYPE_CHECKING:
    from ets_bridge.config import Config

log = get_logger("ipc")

NODE_CHANNEL_FD = "NODE_CHANNEL_FD"
NODE_CHANNEL_SERIALIZATION_MODE = "NODE_CHANNEL_SERIALIZATION_MODE"

# Flags the ETS server needs to talk over IPC in server mode
SERVER_ARGS = ("--node-ipc", "--server-mode")

# Longest single IPC line accepted from the server
DEFAULT_READ_LIMIT = 256 * 1024 * 1024


class IpcChannelClosed(Exception):
    """The language server end of the IPC channel is gone."""


def _is_internal(message: Any) -> bool:
    """Node's own control messages (``{"cmd": "NODE_..."}``) are not LSP traffic."""
    if not isinstance(message, dict):
        return False
    cmd = message.get("cmd")
    return isinstance(cmd, str) and cmd.startswith("NODE_")


@dataclass
class IpcChannel:
    """Bidirectional JSON message channel over a Node IPC socket."""

    reader: asyncio.StreamReader
    writer: asyncio.StreamWriter
    _write_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @classmethod
    async def pair(cls, limit: int = DEFAULT_READ_LIMIT) -> tuple[IpcChannel, socket.socket]:
        """Create a channel and the socket to hand to the child process."""
        parent_sock, child_sock = socket.socketpair(socket.AF_UNIX, socket.SOCK_STREAM)
        reader, writer = await asyncio.open_unix_connection(sock=parent_sock, limit=limit)
        return cls(reader=reader, writer=writer), child_sock

    async def send(self, message: Any) -> None:
        """Send one message. Each call is delivered to the server whole.

        Raises:
            IpcChannelClosed: If the server end has gone away.
        """
        data = dump_json(message) + b"\n"
        async with self._write_lock:
            if self.writer.is_closing():
                raise IpcChannelClosed("IPC channel is closed")
            if log.isEnabledFor(TRACE):
                log.log(TRACE, "-> %s", data[:2000].decode("utf-8", errors="replace").rstrip())
            try:
                self.writer.write(data)
                await self.writer.drain()
            except (BrokenPipeError, ConnectionResetError) as e:
                raise IpcChannelClosed(f"IPC channel is closed: {e}") from e

    async def receive(self) -> Any | None:
        """Read the next server message. Returns None on EOF."""
        while True:
            try:
                line = await self.reader.readline()
            except ValueError as e:
                log.error("Oversized IPC message dropped: %s", e)
                continue
            except ConnectionResetError:
                return None

            if not line:
                return None
            if not line.strip():
                continue

            try:
                message = json.loads(line.decode("utf-8"))
            except (UnicodeDecodeError, json.JSONDecodeError) as e:
                log.error("Invalid IPC message from server: %s %r", e, line[:2000])
                continue

            if _is_internal(message):
                log.debug("Ignoring Node internal message: %s", message.get("cmd"))
                continue

            if log.isEnabledFor(TRACE):
                log.log(TRACE, "<- %s", line[:2000].decode("utf-8", errors="replace").rstrip())
            return message

    async def messages(self) -> AsyncIterator[Any]:
        """Iterate over incoming server messages until EOF."""
        while True:
            message = await self.receive()
            if message is None:
                break
            yield message

    async def close(self) -> None:
        """Close the channel."""
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (BrokenPipeError, ConnectionResetError):
            pass


async def spawn_backend(config: Config, child_sock: socket.socket) -> asyncio.subprocess.Process:
    """Start the language server with ``child_sock`` as its IPC channel.

    The server's stdout and stderr are piped so the bridge can log them;
    they never reach the editor.
    """
    if sys.platform == "win32":
        raise OSError("Node IPC over a socket pair is only supported on POSIX systems")

    fd = child_sock.fileno()
    env = {
        **os.environ,
        NODE_CHANNEL_FD: str(fd),
        NODE_CHANNEL_SERIALIZATION_MODE: "json",
    }
    try:
        return await asyncio.create_subprocess_exec(
            config.node_executable,
            str(config.server_path),
            *SERVER_ARGS,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
            pass_fds=(fd,),
        )
    finally:
        # The child holds its own copy now
        child_sock.close()
