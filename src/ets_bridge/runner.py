"""Bridge runner - starts the language server and relays until shutdown."""

from __future__ import annotations

import asyncio
import os
import signal
from typing import TYPE_CHECKING, Any

from ets_bridge.config import ENV_SERVER_PATH
from ets_bridge.logging import get_logger
from ets_bridge.sdk import discover_auxiliary_paths
from ets_bridge.transport.bridge import BridgeState, TransportBridge
from ets_bridge.transport.ipc import IpcChannel, spawn_backend
from ets_bridge.transport.router import DiscoverFn, MessageRouter
from ets_bridge.transport.stdio import EditorTransport

if TYPE_CHECKING:
    from ets_bridge.config import Config

log = get_logger("runner")

STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class BackendNotFoundError(Exception):
    """The configured language server entry point does not exist."""


def _send_interrupt(process: asyncio.subprocess.Process) -> None:
    """Send SIGINT to the process, falling back to terminate()."""
    try:
        os.kill(process.pid, signal.SIGINT)
    except OSError:
        process.terminate()


def _send_terminate(process: asyncio.subprocess.Process) -> None:
    """Send SIGTERM to the process, falling back to terminate()."""
    try:
        os.kill(process.pid, signal.SIGTERM)
    except OSError:
        process.terminate()


async def graceful_shutdown(
    process: asyncio.subprocess.Process,
    interrupt_timeout: float = 2.0,
    terminate_timeout: float = 3.0,
) -> None:
    """Gracefully shutdown a process: interrupt → terminate → kill.

    Args:
        process: The subprocess to shutdown
        interrupt_timeout: Seconds to wait after sending interrupt signal
        terminate_timeout: Seconds to wait after sending terminate signal
    """
    if process.returncode is not None:
        return

    _send_interrupt(process)
    try:
        await asyncio.wait_for(process.wait(), timeout=interrupt_timeout)
        return
    except asyncio.TimeoutError:
        pass

    _send_terminate(process)
    try:
        await asyncio.wait_for(process.wait(), timeout=terminate_timeout)
        return
    except asyncio.TimeoutError:
        pass

    process.kill()
    await process.wait()


def check_server_path(config: Config) -> None:
    """Make sure the language server entry point exists before spawning it.

    Raises:
        BackendNotFoundError: If the path is unset or not a file.
    """
    if config.server_path is None:
        raise BackendNotFoundError(f"{ENV_SERVER_PATH} is not set")
    if not config.server_path.is_file():
        raise BackendNotFoundError(
            f"Language server does not exist, please build the language server first: "
            f"{config.server_path}"
        )


def _install_signal_handlers(loop: asyncio.AbstractEventLoop, bridge: TransportBridge) -> list[int]:
    installed = []
    for sig in STOP_SIGNALS:
        try:
            loop.add_signal_handler(sig, bridge.request_stop, f"Received {sig.name} signal")
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            log.debug("Cannot install handler for %s", sig.name)
    return installed


async def run_bridge(
    config: Config,
    *,
    editor: EditorTransport | None = None,
    discover: DiscoverFn = discover_auxiliary_paths,
) -> int:
    """Run the bridge until a stop signal or editor EOF.

    Args:
        config: Configuration
        editor: Editor transport; defaults to this process's stdin/stdout
        discover: SDK discovery used by the initialize interception

    Returns:
        Exit code: 0 after a graceful shutdown, 1 if the server could not start.

    Raises:
        Any unhandled error from the relay, after the server is shut down.
    """
    log.info("ETS Language Server bridge starting")

    try:
        check_server_path(config)
    except BackendNotFoundError as e:
        log.error("%s", e)
        return 1

    log.info("Language server path: %s", config.server_path)

    channel, child_sock = await IpcChannel.pair()
    try:
        process = await spawn_backend(config, child_sock)
    except OSError as e:
        log.error("Failed to start language server: %s", e)
        await channel.close()
        return 1

    log.info("Language server started (pid=%d)", process.pid)

    if editor is None:
        editor = await EditorTransport.from_stdio()

    router = MessageRouter(discover, redirect_formatting=config.redirect_formatting)
    bridge = TransportBridge(
        editor,
        channel,
        process,
        router,
        max_message_size=config.max_message_size,
    )

    loop = asyncio.get_running_loop()
    installed = _install_signal_handlers(loop, bridge)
    previous_handler = loop.get_exception_handler()

    def on_loop_error(_loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        exc = context.get("exception")
        bridge.fail(exc if exc is not None else RuntimeError(context.get("message", "unknown")))

    loop.set_exception_handler(on_loop_error)

    try:
        await bridge.run()
    finally:
        loop.set_exception_handler(previous_handler)
        for sig in installed:
            loop.remove_signal_handler(sig)

        await graceful_shutdown(
            process,
            interrupt_timeout=config.shutdown.interrupt_timeout,
            terminate_timeout=config.shutdown.terminate_timeout,
        )
        await channel.close()
        await editor.close()
        bridge.state = BridgeState.TERMINATED
        log.info("Language server bridge stopped")

    return 0
