"""Editor-facing stdio transport.

Reads raw chunks from stdin (framing is the caller's job, see
``FrameParser``) and writes Content-Length framed messages to stdout.
"""

from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass, field
from typing import Any

from ets_bridge.logging import TRACE, get_logger
from ets_bridge.transport.framing import encode_message

log = get_logger("stdio")

READ_CHUNK_SIZE = 64 * 1024


@dataclass
class EditorTransport:
    """Async byte transport over the editor's stdin/stdout."""

    reader: asyncio.StreamReader | None = None
    writer: asyncio.StreamWriter | None = None
    _write_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @classmethod
    async def from_stdio(cls) -> EditorTransport:
        """Create transport from stdin/stdout."""
        loop = asyncio.get_running_loop()

        # Create reader for stdin
        reader = asyncio.StreamReader()
        protocol = asyncio.StreamReaderProtocol(reader)
        await loop.connect_read_pipe(lambda: protocol, sys.stdin.buffer)

        # Create writer for stdout
        writer_transport, writer_protocol = await loop.connect_write_pipe(
            asyncio.streams.FlowControlMixin, sys.stdout.buffer
        )
        writer = asyncio.StreamWriter(writer_transport, writer_protocol, reader, loop)

        return cls(reader=reader, writer=writer)

    async def read_chunk(self, size: int = READ_CHUNK_SIZE) -> bytes:
        """Read whatever bytes are available. Returns b"" on EOF."""
        if self.reader is None:
            return b""
        return await self.reader.read(size)

    async def write_message(self, message: Any) -> None:
        """Write one message as a single Content-Length framed write."""
        if self.writer is None:
            return

        data = encode_message(message)
        async with self._write_lock:
            if log.isEnabledFor(TRACE):
                log.log(TRACE, ">> %s", data[:2000].decode("utf-8", errors="replace"))
            self.writer.write(data)
            await self.writer.drain()

    async def close(self) -> None:
        """Close the transport."""
        if self.writer is not None:
            self.writer.close()
            try:
                await self.writer.wait_closed()
            except (BrokenPipeError, ConnectionResetError):
                pass
