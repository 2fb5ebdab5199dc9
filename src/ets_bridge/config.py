"""Configuration loading for the ETS bridge.

Values are layered: defaults, then an optional YAML file, then environment
variables. CLI flags are applied on top by ``ets_bridge.cli``.

Environment:
    ETS_LANG_SERVER           Path to the ETS language server entry script (required).
    ZED_ETS_LANG_SERVER_LOG   "true" enables the diagnostic log file.
    ETS_BRIDGE_LOG            Log file path (default: <tmp>/arkts-lsw.log).
    ETS_NODE                  Node executable used to launch the server.
"""

from __future__ import annotations

import os
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

ENV_SERVER_PATH = "ETS_LANG_SERVER"
ENV_LOG_ENABLED = "ZED_ETS_LANG_SERVER_LOG"
ENV_LOG_FILE = "ETS_BRIDGE_LOG"
ENV_NODE = "ETS_NODE"

DEFAULT_CONFIG_NAMES = ("ets-bridge.yaml", ".ets-bridge.yaml", "ets-bridge.yml", ".ets-bridge.yml")
DEFAULT_MAX_MESSAGE_SIZE = 64 * 1024 * 1024  # 64 MB


def _default_log_file() -> Path:
    return Path(tempfile.gettempdir()) / "arkts-lsw.log"


@dataclass
class ShutdownConfig:
    """Shutdown timeout configuration."""

    interrupt_timeout: float = 2.0
    """Seconds to wait after sending interrupt (SIGINT)."""

    terminate_timeout: float = 3.0
    """Seconds to wait after sending terminate (SIGTERM)."""


@dataclass
class Config:
    """ETS bridge configuration."""

    server_path: Path | None = None
    node_executable: str = "node"

    # Diagnostics
    log_enabled: bool = False
    log_file: Path = field(default_factory=_default_log_file)
    verbose: int = 2

    # Protocol behaviour
    redirect_formatting: bool = True
    max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE

    shutdown: ShutdownConfig = field(default_factory=ShutdownConfig)


def load_config(
    config_path: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> Config:
    """Load configuration from file and environment."""
    if env is None:
        env = os.environ

    config = Config()

    if config_path is None:
        for name in DEFAULT_CONFIG_NAMES:
            if Path(name).exists():
                config_path = Path(name)
                break

    if config_path and config_path.exists():
        config = _load_yaml_config(config_path)

    _apply_env(config, env)
    return config


def _load_yaml_config(path: Path) -> Config:
    """Load config from YAML file."""
    with open(path, encoding="utf-8") as f:
        data: dict[str, Any] = yaml.safe_load(f) or {}

    shutdown_data = data.get("shutdown") or {}
    shutdown = ShutdownConfig(
        interrupt_timeout=shutdown_data.get("interrupt_timeout", 2.0),
        terminate_timeout=shutdown_data.get("terminate_timeout", 3.0),
    )

    log_data = data.get("log") or {}
    server_path = data.get("server_path")

    return Config(
        server_path=Path(server_path) if server_path else None,
        node_executable=data.get("node", "node"),
        log_enabled=bool(log_data.get("enabled", False)),
        log_file=Path(log_data["file"]) if log_data.get("file") else _default_log_file(),
        verbose=log_data.get("verbose", 2),
        redirect_formatting=data.get("redirect_formatting", True),
        max_message_size=data.get("max_message_size", DEFAULT_MAX_MESSAGE_SIZE),
        shutdown=shutdown,
    )


def _apply_env(config: Config, env: Mapping[str, str]) -> None:
    """Overlay environment variables onto a loaded config."""
    server_path = env.get(ENV_SERVER_PATH)
    if server_path:
        config.server_path = Path(server_path).resolve()

    if ENV_LOG_ENABLED in env:
        config.log_enabled = env[ENV_LOG_ENABLED] == "true"

    log_file = env.get(ENV_LOG_FILE)
    if log_file:
        config.log_file = Path(log_file)

    node = env.get(ENV_NODE)
    if node:
        config.node_executable = node
