"""LSP message framing with Content-Length headers.

This module implements the LSP base protocol framing:
- Incremental parsing of an arbitrarily fragmented byte stream
- Message writing with Content-Length framing

LSP Header Format:
    Content-Length: <length>\r\n
    [Content-Type: <type>]\r\n
    \r\n
    <json-rpc-message>

The Content-Length header is required and specifies the byte count
of the JSON-RPC message body. Headers are separated from the body
by a blank line (double CRLF).

The parser keeps raw, undecoded bytes until a whole body is available,
so a read that ends in the middle of a multi-byte UTF-8 sequence is
harmless. A frame that cannot be used (bad header, bad JSON) is logged
and skipped; the stream resumes at the next frame boundary.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable
from typing import Any

from ets_bridge.logging import TRACE, get_logger

log = get_logger("framing")

# Header constants
HEADER_ENCODING = "ascii"
CONTENT_ENCODING = "utf-8"
HEADER_SEPARATOR = b"\r\n\r\n"

# Content-Length must start a header line; other headers are ignored.
_CONTENT_LENGTH_RE = re.compile(rb"(?:^|\r\n)Content-Length[ \t]*:[ \t]*([^\r\n]*)", re.IGNORECASE)

DEFAULT_MAX_HEADER_SIZE = 64 * 1024
DEFAULT_MAX_MESSAGE_SIZE = 64 * 1024 * 1024

# Longest preview of a bad body kept in log records
_PREVIEW_LIMIT = 2000


class LSPFramingError(Exception):
    """Error in LSP message framing.

    Raised when:
    - Content-Length header is missing
    - Content-Length value is not a valid integer
    - Content-Length value is negative
    - A message cannot be serialized to JSON
    """

    pass


def _content_length(header_block: bytes) -> int:
    """Extract the Content-Length value from a complete header block."""
    match = _CONTENT_LENGTH_RE.search(header_block)
    if match is None:
        raise LSPFramingError("Missing required Content-Length header")

    raw = match.group(1).strip()
    try:
        length = int(raw.decode(HEADER_ENCODING))
    except (UnicodeDecodeError, ValueError) as e:
        raise LSPFramingError(f"Invalid Content-Length value: {raw!r}") from e

    if length < 0:
        raise LSPFramingError(f"Negative Content-Length: {length}")

    return length


class FrameParser:
    """Incremental Content-Length frame parser.

    Feed it bytes as they arrive; it calls ``on_message`` once per complete,
    valid frame, in arrival order, synchronously from inside ``feed``.

    Example:
        >>> messages = []
        >>> parser = FrameParser(messages.append)
        >>> parser.feed(b"Content-Length: 2\\r\\n\\r")
        >>> parser.feed(b"\\n{}")
        >>> messages
        [{}]
    """

    def __init__(
        self,
        on_message: Callable[[Any], None],
        *,
        max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE,
        max_header_size: int = DEFAULT_MAX_HEADER_SIZE,
    ) -> None:
        self._on_message = on_message
        self._buffer = bytearray()
        self.max_message_size = max_message_size
        self.max_header_size = max_header_size

    @property
    def pending(self) -> int:
        """Number of bytes buffered for an incomplete frame."""
        return len(self._buffer)

    def reset(self) -> None:
        """Discard all buffered bytes."""
        if self._buffer:
            log.debug("Discarding %d buffered bytes", len(self._buffer))
        self._buffer.clear()

    def feed(self, chunk: bytes) -> None:
        """Append ``chunk`` and deliver every complete frame now buffered."""
        self._buffer.extend(chunk)
        while self._extract_one():
            pass

    def _extract_one(self) -> bool:
        """Try to consume one frame from the front of the buffer.

        Returns True if the buffer advanced and another attempt may succeed.
        """
        header_end = self._buffer.find(HEADER_SEPARATOR)
        if header_end == -1:
            if len(self._buffer) > self.max_header_size:
                log.error(
                    "No header terminator within %d bytes, resetting buffer",
                    self.max_header_size,
                )
                self.reset()
            return False

        body_start = header_end + len(HEADER_SEPARATOR)
        header_block = bytes(self._buffer[:header_end])

        try:
            content_length = _content_length(header_block)
        except LSPFramingError as e:
            log.warning("Dropping frame with unusable header: %s (header=%r)", e, header_block)
            del self._buffer[:body_start]
            return True

        if content_length > self.max_message_size:
            log.error(
                "Message size %d exceeds maximum %d, resetting buffer",
                content_length,
                self.max_message_size,
            )
            self.reset()
            return False

        body_end = body_start + content_length
        if len(self._buffer) < body_end:
            return False

        body = bytes(self._buffer[body_start:body_end])
        del self._buffer[:body_end]

        if content_length == 0:
            log.debug("Skipping empty frame")
            return True

        try:
            message = json.loads(body.decode(CONTENT_ENCODING))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            text = body.decode(CONTENT_ENCODING, errors="replace")
            log.error(
                "Error parsing message: %s (declared %d bytes, %d available) %s",
                e,
                content_length,
                len(body),
                text[:_PREVIEW_LIMIT],
            )
            return True

        if log.isEnabledFor(TRACE):
            log.log(TRACE, "<< %s", body[:_PREVIEW_LIMIT].decode(CONTENT_ENCODING, errors="replace"))
        self._on_message(message)
        return True


def dump_json(message: Any) -> bytes:
    """Serialize ``message`` as compact UTF-8 JSON.

    Non-ASCII text is written as-is. Strings holding a lone surrogate (valid
    JSON, e.g. ``"\\ud83d"``, but not encodable as UTF-8) fall back to
    ``\\uXXXX`` escapes for the whole body, which decodes to the same value.
    """
    body = json.dumps(message, separators=(",", ":"), ensure_ascii=False)
    try:
        return body.encode(CONTENT_ENCODING)
    except UnicodeEncodeError:
        return json.dumps(message, separators=(",", ":"), ensure_ascii=True).encode(HEADER_ENCODING)


def encode_message(message: Any) -> bytes:
    """Frame a JSON-RPC message with a Content-Length header.

    The length is the UTF-8 byte count of the serialized body, which
    differs from its character count whenever the body has non-ASCII text.

    Raises:
        LSPFramingError: If the message cannot be serialized to JSON.

    Example:
        >>> encode_message({"jsonrpc": "2.0", "id": 1, "result": None})
        b'Content-Length: 38\\r\\n\\r\\n{"jsonrpc":"2.0","id":1,"result":null}'
    """
    try:
        body_bytes = dump_json(message)
    except (TypeError, ValueError) as e:
        raise LSPFramingError(f"Message cannot be serialized to JSON: {e}") from e

    header = f"Content-Length: {len(body_bytes)}\r\n\r\n"
    return header.encode(HEADER_ENCODING) + body_bytes
