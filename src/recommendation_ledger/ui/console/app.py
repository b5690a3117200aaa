"""Diagnostic health console: a Textual view over the gateway.

File: src/recommendation_ledger/ui/console/app.py

Layout: status banner, two check panels, performance and flow panels, and the
recent-failures list. The refresh interval is the only scheduler in the process;
the core never polls on its own.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal
from textual.widgets import Footer

from recommendation_ledger.gateway import RecommendationGateway
from recommendation_ledger.ui.console.state import ConsoleState
from recommendation_ledger.ui.console.widgets import (
    FailureList,
    FlowPanel,
    PerformancePanel,
    CheckPanel,
    StatusBanner,
)

if TYPE_CHECKING:
    from recommendation_ledger.runtime import LedgerRuntime


class HealthConsole(App[int]):
    """Live view of check results, window stats and the last flow verification."""

    TITLE = "Recommendation Ledger Health"
    CSS = """
    Screen { layout: vertical; }
    #checks { height: auto; }
    #stats { height: auto; }
    """
    BINDINGS = [
        Binding("r", "refresh_health", "Health check", show=True),
        Binding("f", "run_flow", "Flow test", show=True),
        Binding("x", "reset_metrics", "Reset metrics", show=True),
        Binding("q", "quit_console", "Quit", show=True),
    ]

    def __init__(
        self,
        gateway: RecommendationGateway,
        *,
        refresh_seconds: float = 5.0,
        check_on_mount: bool = True,
    ) -> None:
        super().__init__()
        self._gateway = gateway
        self._refresh_seconds = refresh_seconds
        self._check_on_mount = check_on_mount
        self._flow_running = False
        self.state = ConsoleState()

    def compose(self) -> ComposeResult:
        yield StatusBanner("", id="banner")
        with Horizontal(id="checks"):
            yield CheckPanel("Database", "database", id="check-database")
            yield CheckPanel("Recommendations", "recommendations", id="check-recommendations")
        with Horizontal(id="stats"):
            yield PerformancePanel("", id="performance")
            yield FlowPanel("", id="flow")
        yield FailureList("", id="failures")
        yield Footer()

    async def on_mount(self) -> None:
        self._sync()
        if self._refresh_seconds > 0:
            self.set_interval(self._refresh_seconds, self.action_refresh_health)
        if self._check_on_mount:
            await self.action_refresh_health()

    async def action_refresh_health(self) -> None:
        self.state.health = await self._gateway.health_check()
        self.state.metrics = self._gateway.health_metrics()
        self.state.last_error = None
        self.state.mark_refreshed()
        self._sync()

    async def action_run_flow(self) -> None:
        if self._flow_running:
            return
        self._flow_running = True
        try:
            self.state.last_flow = await self._gateway.verify_flow()
        finally:
            self._flow_running = False
        self.state.metrics = self._gateway.health_metrics()
        self._sync()

    def action_reset_metrics(self) -> None:
        self._gateway.health_reset()
        self.state.metrics = self._gateway.health_metrics()
        self._sync()

    def action_quit_console(self) -> None:
        self.exit(0)

    def _sync(self) -> None:
        for panel in self.query(StatusBanner):
            panel.update_from_state(self.state)
        for check in self.query(CheckPanel):
            check.update_from_state(self.state)
        self.query_one(PerformancePanel).update_from_state(self.state)
        self.query_one(FlowPanel).update_from_state(self.state)
        self.query_one(FailureList).update_from_state(self.state)


def run_console_app(runtime: LedgerRuntime, *, refresh_seconds: float | None = None) -> int:
    interval = refresh_seconds
    if interval is None:
        interval = float(runtime.config["console"]["refresh_seconds"])
    app = HealthConsole(RecommendationGateway.from_runtime(runtime), refresh_seconds=interval)
    result = app.run()
    return int(result) if isinstance(result, int) else 0


__all__ = ["HealthConsole", "run_console_app"]
