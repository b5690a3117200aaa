"""Optional diagnostic console with graceful fallback when Textual is absent.

Exposes ``console_available()`` for dependency checks and ``run_console()`` for
launching. This module must import cleanly without Textual.
"""

from __future__ import annotations

import sys
from collections.abc import Mapping
from importlib.util import find_spec
from typing import Any


def console_available() -> bool:
    """Return whether optional console dependencies are available in this environment."""
    return find_spec("textual") is not None


def run_console(config: Mapping[str, Any], *, refresh_seconds: float | None = None) -> int:
    """Run the console, or exit with code 2 and an install hint if unavailable."""
    if not console_available():
        print(
            "Console requires optional dependency. Install: pip install -e '.[tui]'",
            file=sys.stderr,
        )
        return 2

    from recommendation_ledger.runtime import build_runtime
    from recommendation_ledger.ui.console.app import run_console_app

    with build_runtime(config, configure_logging=True) as runtime:
        return run_console_app(runtime, refresh_seconds=refresh_seconds)


__all__ = ["console_available", "run_console"]
