"""Human-readable output for the recommendation-ledger CLI.

File: src/recommendation_ledger/ui/render.py

Commands that are run with ``--json`` print the payload directly and never reach this
module. Everything here writes plain text to stdout and only depends on what the payload
already contains, so the same payload always renders the same way.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from recommendation_ledger.ui.console.state import (
    failure_lines,
    format_flow,
    format_check,
    status_badge,
)

_RECORD_COLUMNS = ("ID", "EXTERNAL", "PRIORITY", "EFFORT", "STATUS", "TITLE")
_TITLE_WIDTH = 48
_INDENT = "  "


class CLIRenderer:
    def __init__(self, *, verbose: bool = False) -> None:
        self.verbose = verbose

    def text(self, line: str) -> None:
        print(line)

    def kv(self, key: str, value: object) -> None:
        print(f"{key}: {value}")

    def section(self, title: str) -> None:
        print()
        print(title)

    def items(self, entries: Sequence[str], *, prefix: str = "- ") -> None:
        for entry in entries:
            print(_INDENT + prefix + entry)

    def table(
        self,
        headers: Sequence[str],
        rows: Sequence[Sequence[str]],
        *,
        title: str | None = None,
    ) -> None:
        """Left-aligned columns separated by two spaces; an empty ``rows`` prints nothing."""

        if not rows:
            return
        columns = range(len(headers))
        grid = [[str(cell) for cell in headers]]
        grid += [[str(row[col]) if col < len(row) else "" for col in columns] for row in rows]
        widths = [max(len(line[col]) for line in grid) for col in columns]

        if title:
            self.section(title)
        lines = [grid[0], ["-" * width for width in widths], *grid[1:]]
        for cells in lines:
            joined = "  ".join(cell.ljust(width) for cell, width in zip(cells, widths))
            print(_INDENT + joined.rstrip())

    def next_steps(self, steps: Sequence[str]) -> None:
        if steps:
            self.section("Next steps:")
            self.items(steps, prefix="$ ")

    def records(self, records: Sequence[Mapping[str, object]], *, title: str | None = None) -> None:
        keys = ("id", "external_id", "priority", "effort", "status")
        rows = [
            [str(item.get(key, "")) for key in keys]
            + [_shorten(str(item.get("title", "")), _TITLE_WIDTH)]
            for item in records
        ]
        self.table(_RECORD_COLUMNS, rows, title=title)

    def health(self, status: Mapping[str, object]) -> None:
        self.kv("Overall", status_badge(status.get("overall")))
        self.kv("Checked at", status.get("timestamp", "?"))
        self.section(format_check("Database", status.get("database")))
        self.section(format_check("Recommendations", status.get("recommendations")))
        performance = status.get("performance")
        if isinstance(performance, Mapping):
            self.section("Last hour")
            for key, value in sorted(performance.items()):
                self.kv(_INDENT + key, value)

    def metrics(self, metrics: Mapping[str, object]) -> None:
        self.section("Window metrics")
        for key in ("current_status", "total_operations", "success_rate", "average_duration_ms"):
            self.kv(_INDENT + key, metrics.get(key))
        by_type = metrics.get("operations_by_type")
        if isinstance(by_type, Mapping) and by_type:
            counts = ", ".join(f"{name}={count}" for name, count in sorted(by_type.items()))
            self.kv(_INDENT + "operations_by_type", counts)
        failures = failure_lines(metrics)
        if failures:
            self.section("Recent failures")
            self.items(failures)

    def flow(self, report: Mapping[str, object]) -> None:
        self.text(format_flow(report))
        flow = report.get("flow")
        phases = flow.get("phases") if isinstance(flow, Mapping) else None
        if not self.verbose or not isinstance(phases, Mapping):
            return
        rows = [
            [str(name), _phase_verdict(phase), str(phase.get("duration_ms", 0))]
            for name, phase in phases.items()
            if isinstance(phase, Mapping)
        ]
        self.table(("PHASE", "RESULT", "MS"), rows, title="Phases")


def create_renderer(*, verbose: bool = False) -> CLIRenderer:
    return CLIRenderer(verbose=verbose)


def _phase_verdict(phase: Mapping[str, object]) -> str:
    if phase.get("skipped"):
        return "skip"
    return "ok" if phase.get("success") else "FAIL"


def _shorten(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[: limit - 3] + "..."


__all__ = ["CLIRenderer", "create_renderer"]
