"""Command-line interface for ets-lsp-bridge."""

from __future__ import annotations

import argparse
import asyncio
import sys
from collections.abc import Sequence
from pathlib import Path

from rich.console import Console

from ets_bridge import __version__
from ets_bridge.config import Config, load_config
from ets_bridge.logging import close_logging, get_logger, setup_logging

console = Console(stderr=True)
log = get_logger()


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="ets-lsp-bridge",
        description="Bridge an editor's stdio LSP client to the Node IPC ETS language server",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=None,
        help="Log verbosity (repeat up to 4 times; default: info)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Config file path (default: ./ets-bridge.yaml)",
    )
    parser.add_argument(
        "--server",
        type=Path,
        help="Language server entry script (overrides ETS_LANG_SERVER)",
    )
    parser.add_argument(
        "--node",
        help="Node executable used to launch the server (default: node)",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        help="Write the diagnostic log to this file (enables file logging)",
    )
    return parser


def apply_overrides(config: Config, parsed: argparse.Namespace) -> Config:
    """Apply CLI flags on top of file and environment configuration."""
    if parsed.server is not None:
        config.server_path = parsed.server.resolve()
    if parsed.node:
        config.node_executable = parsed.node
    if parsed.log_file is not None:
        config.log_file = parsed.log_file
        config.log_enabled = True
    if parsed.verbose is not None:
        config.verbose = parsed.verbose
    return config


def _print_banner(config: Config) -> None:
    """Show startup details when run by hand from a terminal."""
    if not sys.stderr.isatty():
        return
    console.print(f"[bold]ets-lsp-bridge {__version__}[/bold]")
    console.print(f"[dim]server: {config.server_path} (via {config.node_executable})[/dim]")
    if config.log_enabled:
        console.print(f"[dim]log: {config.log_file}[/dim]")


def run_cli(args: Sequence[str]) -> int:
    """Run the CLI with the given arguments."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    config = apply_overrides(load_config(config_path=parsed.config), parsed)
    setup_logging(config)
    _print_banner(config)

    from ets_bridge.runner import run_bridge

    try:
        return asyncio.run(run_bridge(config))
    except KeyboardInterrupt:
        return 0
    except Exception as e:
        log.error("Uncaught exception: %s", e, exc_info=True)
        return 1
    finally:
        close_logging()
