"""ETS LSP Bridge - stdio LSP front end for the Node IPC ArkTS language server."""

from ets_bridge.config import Config, load_config
from ets_bridge.transport.framing import FrameParser, encode_message

__all__ = [
    "Config",
    "FrameParser",
    "encode_message",
    "load_config",
]

__version__ = "0.1.0"
