"""Console state and text formatting. Pure data with NO Textual imports.

File: src/recommendation_ledger/ui/console/state.py

Widgets read a ``ConsoleState`` snapshot and render the strings produced here,
so everything below is testable without Textual installed.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Final

STATUS_BADGES: Final[dict[str, str]] = {
    "healthy": "HEALTHY",
    "warning": "WARNING",
    "critical": "CRITICAL",
}
NO_DATA: Final[str] = "no data yet"
MAX_FAILURE_LINES: Final[int] = 10


@dataclass
class ConsoleState:
    """Root state object for the console, mutated only by the app actions."""

    health: dict[str, object] | None = None
    metrics: dict[str, object] | None = None
    last_flow: dict[str, object] | None = None
    last_error: str | None = None
    last_refreshed: str = ""

    def mark_refreshed(self) -> None:
        self.last_refreshed = datetime.now(UTC).strftime("%H:%M:%S")


def status_badge(overall: object) -> str:
    if not isinstance(overall, str):
        return "UNKNOWN"
    return STATUS_BADGES.get(overall, overall.upper())


def format_banner(state: ConsoleState) -> str:
    if state.last_error:
        return f"ERROR  {state.last_error}"
    if state.health is None:
        return f"UNKNOWN  {NO_DATA}  (press r to run a health check)"
    badge = status_badge(state.health.get("overall"))
    suffix = f"  checked {state.last_refreshed}" if state.last_refreshed else ""
    return f"{badge}{suffix}"


def format_check(title: str, check: object) -> str:
    if not isinstance(check, Mapping):
        return f"{title}\n  {NO_DATA}"
    lines = [
        f"{title}: {status_badge(check.get('status'))}",
        f"  response: {_number(check.get('response_time_ms'))} ms",
    ]
    message = check.get("message")
    if isinstance(message, str) and message:
        lines.append(f"  {message}")
    details = check.get("details")
    if isinstance(details, Mapping):
        for key in sorted(details):
            lines.append(f"  {key}: {_display(details[key])}")
    error = check.get("error")
    if isinstance(error, str) and error:
        lines.append(f"  error: {error}")
    return "\n".join(lines)


def format_performance(metrics: object) -> str:
    if not isinstance(metrics, Mapping):
        return f"Performance\n  {NO_DATA}"
    rate = metrics.get("success_rate")
    rate_text = f"{rate * 100:.1f}%" if isinstance(rate, (int, float)) else "n/a"
    current = metrics.get("current_status")
    lines = [
        "Performance",
        f"  status: {status_badge(current) if current else 'n/a'}",
        f"  operations: {metrics.get('total_operations', 0)}",
        f"  success rate: {rate_text}",
        f"  average: {_number(metrics.get('average_duration_ms'))} ms",
    ]
    by_type = metrics.get("operations_by_type")
    if isinstance(by_type, Mapping) and by_type:
        rendered = ", ".join(f"{key}={by_type[key]}" for key in sorted(by_type))
        lines.append(f"  by type: {rendered}")
    return "\n".join(lines)


def failure_lines(metrics: object, *, limit: int = MAX_FAILURE_LINES) -> list[str]:
    if not isinstance(metrics, Mapping):
        return []
    failures = metrics.get("recent_failures")
    if not isinstance(failures, Sequence) or isinstance(failures, str):
        return []
    lines: list[str] = []
    for item in list(failures)[:limit]:
        if not isinstance(item, Mapping):
            continue
        analysis = item.get("analysis_id")
        target = f" analysis={analysis}" if analysis is not None else ""
        lines.append(
            f"{item.get('timestamp', '?')} {item.get('operation_type', '?')}{target}: "
            f"{item.get('error_message') or 'unknown error'}"
        )
    return lines


def format_failures(metrics: object) -> str:
    lines = failure_lines(metrics)
    if not lines:
        return "Recent failures\n  none"
    return "Recent failures\n" + "\n".join(f"  {line}" for line in lines)


def format_flow(report: object) -> str:
    if not isinstance(report, Mapping):
        return "Flow verification\n  not run (press f)"
    flow = report.get("flow")
    lines = [
        f"Flow verification: {report.get('overall_status', '?')}"
        f"  rating={report.get('performance_rating', '?')}",
    ]
    if isinstance(flow, Mapping):
        summary = flow.get("summary")
        if isinstance(summary, str):
            lines.append(f"  {summary}")
        metrics = flow.get("metrics")
        if isinstance(metrics, Mapping):
            lines.append(
                f"  total {_number(metrics.get('total_ms'))} ms, "
                f"integrity {metrics.get('integrity_score', 'n/a')}"
            )
        errors = flow.get("errors")
        if isinstance(errors, Sequence) and not isinstance(errors, str):
            lines.extend(f"  ! {item}" for item in errors)
    return "\n".join(lines)


def _number(value: object) -> str:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return "n/a"
    return f"{float(value):.1f}"


def _display(value: object) -> str:
    if isinstance(value, (list, tuple)):
        return ", ".join(str(item) for item in value) or "-"
    if value is None:
        return "-"
    return str(value)


__all__ = [
    "ConsoleState",
    "MAX_FAILURE_LINES",
    "NO_DATA",
    "STATUS_BADGES",
    "failure_lines",
    "format_banner",
    "format_failures",
    "format_flow",
    "format_performance",
    "format_check",
    "status_badge",
]
