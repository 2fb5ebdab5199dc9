"""Editor → server message rewriting.

Almost every message passes through untouched. Two are rewritten:

- ``initialize`` gets the discovered SDK layout in its initialization
  options and is followed by a configuration request the server waits on
  before it types ETS sources.
- ``textDocument/formatting`` and ``textDocument/rangeFormatting`` are sent
  as ``ets/formatDocument``, the server's own formatting method.
"""

from __future__ import annotations

import copy
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from ets_bridge.logging import get_logger
from ets_bridge.types import (
    CONFIGURATION_CHANGED,
    FORMAT_DOCUMENT,
    FORMATTING_METHODS,
    INITIALIZE,
    AuxiliarySdkPaths,
    EtsConfiguration,
    TypescriptOptions,
)

log = get_logger("router")

DiscoverFn = Callable[[str | None, str], Awaitable[AuxiliarySdkPaths]]


def _option(options: dict[str, Any], section: str, key: str) -> str | None:
    """Read ``options[section][key]``, falling back to ``options[key]``."""
    nested = options.get(section)
    if isinstance(nested, dict) and isinstance(nested.get(key), str):
        return nested[key]
    value = options.get(key)
    return value if isinstance(value, str) else None


class MessageRouter:
    """Decides what the bridge sends to the server for each editor message."""

    def __init__(self, discover: DiscoverFn, *, redirect_formatting: bool = True) -> None:
        self.discover = discover
        self.redirect_formatting = redirect_formatting

    async def route(self, message: Any) -> list[Any]:
        """Return the messages to forward for ``message``, in send order."""
        if not isinstance(message, dict):
            return [message]

        method = message.get("method")
        if method == INITIALIZE:
            return await self._intercept_initialize(message)

        if self.redirect_formatting and method in FORMATTING_METHODS:
            log.debug("Redirecting %s (id=%s) to %s", method, message.get("id"), FORMAT_DOCUMENT)
            return [{**message, "method": FORMAT_DOCUMENT}]

        return [message]

    async def _intercept_initialize(self, message: dict[str, Any]) -> list[Any]:
        params = message.get("params")
        if not isinstance(params, dict):
            log.warning("initialize request has no params, forwarding unchanged")
            return [message]

        options = params.get("initializationOptions")
        if not isinstance(options, dict):
            options = {}

        tsdk = _option(options, "typescript", "tsdk")
        sdk_root = _option(options, "ohos", "sdkPath")
        if not sdk_root:
            log.warning("initialize request has no SDK path, forwarding unchanged")
            return [message]

        log.info("Discovering SDK files (tsdk=%s, sdk=%s)", tsdk, sdk_root)
        auxiliary = await self.discover(tsdk, sdk_root)

        configuration = EtsConfiguration(
            typescript=TypescriptOptions(tsdk=tsdk) if tsdk else None,
            ohos=auxiliary,
        ).to_wire()

        augmented = copy.deepcopy(message)
        new_options = augmented["params"].setdefault("initializationOptions", {})
        if not isinstance(new_options, dict):
            new_options = augmented["params"]["initializationOptions"] = {}
        new_options.update(configuration)
        if not tsdk:
            new_options.pop("typescript", None)

        follow_up = {
            "jsonrpc": "2.0",
            "id": f"ets-bridge-{uuid.uuid4()}",
            "method": CONFIGURATION_CHANGED,
            "params": configuration,
        }
        return [augmented, follow_up]
