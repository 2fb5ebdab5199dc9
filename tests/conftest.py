"""Root pytest configuration for all tests."""

from __future__ import annotations

from pathlib import Path

import pytest

# Configure pytest-asyncio to use auto mode
# This is redundant with pyproject.toml but ensures it's set
pytest_plugins = ("pytest_asyncio",)

MOCKS_DIR = Path(__file__).parent / "mocks"


@pytest.fixture
def mock_server_path() -> Path:
    """Path of the Python stand-in for the ETS language server."""
    return MOCKS_DIR / "mock_ets_server.py"
