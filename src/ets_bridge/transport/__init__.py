"""Transport layer: editor stdio framing, server IPC and the bridge between them."""

from ets_bridge.transport.bridge import BridgeState, TransportBridge
from ets_bridge.transport.framing import FrameParser, LSPFramingError, encode_message
from ets_bridge.transport.ipc import IpcChannel, IpcChannelClosed
from ets_bridge.transport.router import MessageRouter
from ets_bridge.transport.stdio import EditorTransport

__all__ = [
    "BridgeState",
    "EditorTransport",
    "FrameParser",
    "IpcChannel",
    "IpcChannelClosed",
    "LSPFramingError",
    "MessageRouter",
    "TransportBridge",
    "encode_message",
]
