"""CLI entry point for ets-lsp-bridge."""

import sys


def main() -> int:
    """Main entry point for ets-lsp-bridge CLI."""
    from ets_bridge.cli import run_cli

    return run_cli(sys.argv[1:])


if __name__ == "__main__":
    sys.exit(main())
