"""Discovery of TypeScript and OpenHarmony SDK declaration files.

The language server needs to know where the SDK's ETS components and
ets-loader live, plus every ``.d.ts`` library it should load. This is
computed once per session, from the two roots the editor passes in the
``initialize`` request, and walks the filesystem off the event loop.
"""

from __future__ import annotations

import asyncio
import os
import re
from pathlib import Path

from ets_bridge.logging import get_logger
from ets_bridge.types import DEFAULT_PATH_ALIASES, AuxiliarySdkPaths

log = get_logger("sdk")

DECLARATION_PATTERN = re.compile(r"d\.ts$", re.IGNORECASE)


def _collect(directory: Path, pattern: re.Pattern[str], recursive: bool) -> list[str]:
    """Blocking walk used by :func:`get_files_by_pattern`."""
    if not directory.exists():
        log.warning("Path does not exist: %s", directory)
        return []
    if not directory.is_dir():
        log.warning("Path is not a directory: %s", directory)
        return []

    try:
        names = sorted(os.listdir(directory))
    except OSError as e:
        log.error("Error reading directory %s: %s", directory, e)
        return []

    result: list[str] = []
    for name in names:
        full_path = directory / name
        try:
            if full_path.is_dir():
                if recursive:
                    result.extend(_collect(full_path, pattern, recursive))
            elif full_path.is_file() and pattern.search(str(full_path)):
                result.append(str(full_path))
        except OSError as e:
            log.error("Error processing %s: %s", full_path, e)
    return result


async def get_files_by_pattern(
    directory: str | Path,
    pattern: re.Pattern[str],
    recursive: bool = True,
) -> list[str]:
    """List files under ``directory`` whose full path matches ``pattern``.

    Missing or non-directory roots yield an empty list. Entries that fail
    to stat are logged and skipped; the walk itself never raises.
    """
    return await asyncio.to_thread(_collect, Path(directory), pattern, recursive)


async def list_libs(directory: str | Path) -> list[str]:
    """List every declaration (``*.d.ts``) file under ``directory``."""
    return await get_files_by_pattern(directory, DECLARATION_PATTERN)


async def discover_auxiliary_paths(ts_root: str | None, sdk_root: str) -> AuxiliarySdkPaths:
    """Compute the SDK layout and library list for one session.

    Args:
        ts_root: TypeScript ``lib`` directory (the editor's ``tsdk``), if known.
        sdk_root: OpenHarmony SDK directory for the target API level.
    """
    sdk = Path(sdk_root)
    component_path = sdk / "ets" / "component"
    loader_path = sdk / "ets" / "build-tools" / "ets-loader"
    loader_config_path = loader_path / "tsconfig.json"

    ts_libs, component_libs, loader_libs = await asyncio.gather(
        list_libs(ts_root) if ts_root else _no_libs(),
        list_libs(component_path),
        list_libs(loader_path / "declarations"),
    )

    paths = AuxiliarySdkPaths(
        sdk_path=str(sdk),
        component_path=str(component_path),
        loader_config_path=str(loader_config_path),
        loader_path=str(loader_path),
        base_url=str(sdk / "ets"),
        libraries=[*ts_libs, *component_libs, *loader_libs],
        path_aliases={k: list(v) for k, v in DEFAULT_PATH_ALIASES.items()},
    )
    log.info(
        "Discovered %d declaration files (typescript=%d, component=%d, loader=%d)",
        len(paths.libraries),
        len(ts_libs),
        len(component_libs),
        len(loader_libs),
    )
    return paths


async def _no_libs() -> list[str]:
    return []
