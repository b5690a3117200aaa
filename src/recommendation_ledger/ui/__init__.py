"""UI package exports for the CLI, plain-text rendering and the optional console."""

from recommendation_ledger.ui.cli import CLIError, build_parser, run_cli
from recommendation_ledger.ui.console import console_available, run_console
from recommendation_ledger.ui.render import CLIRenderer, create_renderer

__all__ = [
    "CLIError",
    "CLIRenderer",
    "build_parser",
    "console_available",
    "create_renderer",
    "run_cli",
    "run_console",
]
