"""Console panels: thin Static wrappers over the formatters in ``state``.

File: src/recommendation_ledger/ui/console/widgets.py
"""

from __future__ import annotations

from textual.widgets import Static

from recommendation_ledger.ui.console.state import (
    ConsoleState,
    format_banner,
    format_failures,
    format_flow,
    format_performance,
    format_check,
)


class _Panel(Static):
    """Static that remembers the last text it was given."""

    last_text: str = ""

    def set_text(self, text: str) -> None:
        self.last_text = text
        self.update(text)


class StatusBanner(_Panel):
    """Overall health verdict, docked at the top."""

    DEFAULT_CSS = """
    StatusBanner {
        dock: top;
        height: 1;
        padding: 0 1;
        text-style: bold;
    }
    StatusBanner.-healthy { background: #14532d; color: #dcfce7; }
    StatusBanner.-warning { background: #713f12; color: #fef9c3; }
    StatusBanner.-critical { background: #7f1d1d; color: #fee2e2; }
    """

    def update_from_state(self, state: ConsoleState) -> None:
        overall = state.health.get("overall") if state.health is not None else None
        for name in ("healthy", "warning", "critical"):
            self.set_class(overall == name, f"-{name}")
        self.set_text(format_banner(state))


class CheckPanel(_Panel):
    """One live check (database or recommendations)."""

    DEFAULT_CSS = """
    CheckPanel {
        width: 1fr;
        height: auto;
        border: round #3b82f6;
        padding: 0 1;
    }
    """

    def __init__(self, title: str, key: str, *, id: str | None = None) -> None:
        super().__init__("", id=id)
        self._title = title
        self._key = key

    def update_from_state(self, state: ConsoleState) -> None:
        check = state.health.get(self._key) if state.health is not None else None
        self.set_text(format_check(self._title, check))


class PerformancePanel(_Panel):
    DEFAULT_CSS = """
    PerformancePanel {
        width: 1fr;
        height: auto;
        border: round #64748b;
        padding: 0 1;
    }
    """

    def update_from_state(self, state: ConsoleState) -> None:
        self.set_text(format_performance(state.metrics))


class FailureList(_Panel):
    DEFAULT_CSS = """
    FailureList {
        height: auto;
        border: round #ef4444;
        padding: 0 1;
    }
    """

    def update_from_state(self, state: ConsoleState) -> None:
        self.set_text(format_failures(state.metrics))


class FlowPanel(_Panel):
    DEFAULT_CSS = """
    FlowPanel {
        height: auto;
        border: round #a855f7;
        padding: 0 1;
    }
    """

    def update_from_state(self, state: ConsoleState) -> None:
        self.set_text(format_flow(state.last_flow))


__all__ = ["FailureList", "FlowPanel", "PerformancePanel", "CheckPanel", "StatusBanner"]
