"""Command-line interface router for recommendation-ledger."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

import yaml

from recommendation_ledger.config import (
    ConfigLoadError,
    ConfigValidationError,
    effective_config,
    load_config,
)
from recommendation_ledger.errors import InvalidReference, StoreError
from recommendation_ledger.gateway import STORE_UNAVAILABLE_MESSAGE, RecommendationGateway
from recommendation_ledger.main import ExitCode
from recommendation_ledger.persistence.recommendations import coerce_positive_id
from recommendation_ledger.runtime import LedgerRuntime, build_runtime
from recommendation_ledger.ui.render import CLIRenderer, create_renderer

_STORE_ERROR_TYPES: Final[frozenset[str]] = frozenset({"unavailable", "store", "timeout", "query"})


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 1

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="recommendation-ledger",
        description=(
            "recommendation-ledger — verified persistence for analysis recommendations.\n\n"
            "Common workflows:\n"
            "  recommendation-ledger init-db                 Create or migrate the store\n"
            "  recommendation-ledger save 12 recs.yaml       Save a batch with verification\n"
            "  recommendation-ledger verify-flow             Run the end-to-end self test\n"
            "  recommendation-ledger health --with-flow      Check the store and report health\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to ledger TOML config (default: ./ledger.toml if present).",
    )
    common.add_argument(
        "--profile",
        default=None,
        help="Optional config profile overlay name (diagnostic, ci, or user-defined).",
    )
    common.add_argument(
        "--database",
        dest="database_path",
        default=None,
        help="Override database.path for this invocation.",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Show detailed output.",
    )
    common.add_argument("--json", action="store_true", help="Emit deterministic JSON output")

    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser(
        "init-db",
        parents=[common],
        help="Create the record store and apply migrations",
    )
    init_parser.set_defaults(handler=_cmd_init_db)

    analysis_parser = subparsers.add_parser(
        "create-analysis",
        parents=[common],
        help="Register an analysis and print its id",
    )
    analysis_parser.add_argument("title", help="Analysis title")
    analysis_parser.add_argument("--content", default="", help="Optional analysis body text")
    analysis_parser.set_defaults(handler=_cmd_create_analysis)

    save_parser = subparsers.add_parser(
        "save",
        parents=[common],
        help="Save recommendations from a JSON or YAML file",
        description=(
            "Save a batch of recommendations and verify the write.\n\n"
            "The file holds a list of recommendation objects, or a mapping with a\n"
            "'recommendations' list. JSON is accepted since it is valid YAML.\n\n"
            "Examples:\n"
            "  recommendation-ledger save 12 recs.json\n"
            "  recommendation-ledger save 12 more.yaml --append\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    save_parser.add_argument("analysis_id", help="Target analysis id")
    save_parser.add_argument("path", help="JSON or YAML file with recommendations")
    save_parser.add_argument(
        "--append",
        action="store_true",
        default=False,
        help="Keep existing rows instead of replacing them",
    )
    save_parser.set_defaults(handler=_cmd_save)

    fetch_parser = subparsers.add_parser(
        "fetch",
        parents=[common],
        help="Fetch recommendations for an analysis",
    )
    fetch_parser.add_argument("analysis_id", help="Analysis id")
    fetch_parser.set_defaults(handler=_cmd_fetch)

    audit_parser = subparsers.add_parser(
        "audit",
        parents=[common],
        help="Audit stored rows against an expected count",
    )
    audit_parser.add_argument("analysis_id", help="Analysis id")
    audit_parser.add_argument(
        "--expected", type=int, required=True, help="Number of rows that should exist"
    )
    audit_parser.set_defaults(handler=_cmd_audit)

    status_parser = subparsers.add_parser(
        "set-status",
        parents=[common],
        help="Change a recommendation's status",
    )
    status_parser.add_argument("recommendation_id", help="Recommendation row id")
    status_parser.add_argument(
        "status", help="New status (pending, in-progress, completed, dismissed)"
    )
    status_parser.add_argument("--notes", default=None, help="Optional note for the history")
    status_parser.set_defaults(handler=_cmd_set_status)

    history_parser = subparsers.add_parser(
        "history",
        parents=[common],
        help="Show the status history of a recommendation",
    )
    history_parser.add_argument("recommendation_id", help="Recommendation row id")
    history_parser.set_defaults(handler=_cmd_history)

    quick_parser = subparsers.add_parser(
        "quick-wins",
        parents=[common],
        help="List pending quick, high-impact recommendations",
    )
    quick_parser.add_argument("analysis_id", help="Analysis id")
    quick_parser.add_argument("--limit", type=int, default=5, help="Maximum rows (default: 5)")
    quick_parser.set_defaults(handler=_cmd_quick_wins)

    flow_parser = subparsers.add_parser(
        "verify-flow",
        parents=[common],
        help="Run the setup/save/fetch/validate/cleanup self test",
    )
    flow_parser.add_argument(
        "--records",
        type=int,
        default=None,
        help="Synthetic record count (default: harness.record_count)",
    )
    flow_parser.set_defaults(handler=_cmd_verify_flow)

    health_parser = subparsers.add_parser(
        "health",
        parents=[common],
        help="Run live checks against the record store",
        description=(
            "Check the database and the recommendations table.\n\n"
            "Window metrics only cover operations made by this process, so\n"
            "--with-flow runs the self test first to populate them.\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    health_parser.add_argument(
        "--metrics", action="store_true", default=False, help="Include window metrics"
    )
    health_parser.add_argument(
        "--with-flow",
        action="store_true",
        default=False,
        help="Run flow verification before probing",
    )
    health_parser.set_defaults(handler=_cmd_health)

    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Show effective configuration (redacted)",
    )
    config_parser.set_defaults(handler=_cmd_config)

    console_parser = subparsers.add_parser(
        "console",
        parents=[common],
        help="Launch the interactive health console",
        description=(
            "Launch the live health console.\n\n"
            "Requires optional console dependencies (pip install -e '.[tui]').\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    console_parser.add_argument(
        "--refresh",
        type=float,
        default=None,
        help="Refresh interval in seconds (default: console.refresh_seconds)",
    )
    console_parser.set_defaults(handler=_cmd_console)

    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return int(ExitCode.CONFIG_ERROR)

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_init_db(args: argparse.Namespace) -> int:
    with _open_runtime(args) as runtime:
        store = runtime.store
        tables = sorted(store.table_names())
        payload: dict[str, object] = {
            "command": "init-db",
            "database_path": store.path.as_posix(),
            "schema_version": store.schema_version(),
            "tables": tables,
        }

    if _flag(args, "json"):
        _emit_json(payload)
        return int(ExitCode.SUCCESS)

    renderer = _get_renderer(args)
    renderer.kv("Database", payload["database_path"])
    renderer.kv("Schema version", payload["schema_version"])
    renderer.kv("Tables", ", ".join(str(item) for item in tables))
    renderer.next_steps(["recommendation-ledger create-analysis 'My analysis'"])
    return int(ExitCode.SUCCESS)


def _cmd_create_analysis(args: argparse.Namespace) -> int:
    with _open_runtime(args) as runtime:
        envelope = asyncio.run(
            RecommendationGateway.from_runtime(runtime).create_analysis(
                args.title, content=args.content
            )
        )
    return _finish(
        args,
        "create-analysis",
        envelope,
        failure_code=ExitCode.CONFIG_ERROR,
        render=lambda renderer: renderer.kv("Analysis ID", envelope.get("analysis_id")),
    )


def _cmd_save(args: argparse.Namespace) -> int:
    records = _load_records_file(Path(args.path))
    with _open_runtime(args) as runtime:
        envelope = asyncio.run(
            RecommendationGateway.from_runtime(runtime).save_recommendations(
                args.analysis_id, records, replace=not args.append
            )
        )

    if not envelope.get("success"):
        code = ExitCode.CONFIG_ERROR
        if envelope.get("error_type") in _STORE_ERROR_TYPES:
            code = ExitCode.STORE_ERROR
        return _finish(args, "save", envelope, failure_code=code)

    verification = envelope.get("verification_result")
    verified = isinstance(verification, Mapping) and bool(verification.get("verified"))
    if _flag(args, "json"):
        _emit_json({"command": "save", **envelope})
    else:
        renderer = _get_renderer(args)
        renderer.text(str(envelope.get("message")))
        if isinstance(verification, Mapping):
            renderer.kv(
                "Verification",
                f"expected={verification.get('expected_count')} "
                f"actual={verification.get('actual_count')} "
                f"verified={verification.get('verified')}",
            )
    return int(ExitCode.SUCCESS if verified else ExitCode.VERIFICATION_FAILED)


def _cmd_fetch(args: argparse.Namespace) -> int:
    with _open_runtime(args) as runtime:
        envelope = asyncio.run(
            RecommendationGateway.from_runtime(runtime).get_recommendations(args.analysis_id)
        )

    failure_code = ExitCode.STORE_ERROR
    if envelope.get("error_type") == "invalid_reference":
        failure_code = ExitCode.CONFIG_ERROR

    def _render(renderer: CLIRenderer) -> None:
        metadata = envelope.get("metadata")
        records = envelope.get("recommendations")
        if isinstance(metadata, Mapping):
            renderer.kv("Analysis", metadata.get("analysis_id"))
            renderer.kv("Total", metadata.get("total_count"))
            performance = metadata.get("performance")
            if isinstance(performance, Mapping):
                renderer.kv(
                    "Fetch time",
                    f"{performance.get('fetch_time_ms')} ms ({performance.get('rating')})",
                )
        if isinstance(records, list) and records:
            renderer.records(records)
        else:
            renderer.text("No recommendations stored for this analysis.")

    return _finish(args, "fetch", envelope, failure_code=failure_code, render=_render)


def _cmd_audit(args: argparse.Namespace) -> int:
    analysis_id = _positive_id(args.analysis_id)
    if args.expected < 0:
        raise CLIError("--expected must be >= 0", exit_code=int(ExitCode.CONFIG_ERROR))
    with _open_runtime(args) as runtime:
        result = runtime.auditor.audit(analysis_id, args.expected)

    if result.error is not None:
        raise CLIError(f"audit failed: {result.error}", exit_code=int(ExitCode.STORE_ERROR))

    if _flag(args, "json"):
        _emit_json({"command": "audit", **result.to_dict()})
    else:
        renderer = _get_renderer(args)
        renderer.kv("Analysis", result.analysis_id)
        renderer.kv("Expected", result.expected_count)
        renderer.kv("Actual", result.actual_count)
        renderer.kv("Integrity score", result.integrity_score)
        renderer.kv("Consistent", result.is_consistent)
        if result.corrupted:
            renderer.section("Corrupted rows:")
            renderer.items(
                [
                    f"#{item.record_id} ({item.external_id}): {', '.join(item.issues)}"
                    for item in result.corrupted
                ]
            )
    return int(ExitCode.SUCCESS if result.is_consistent else ExitCode.VERIFICATION_FAILED)


def _cmd_set_status(args: argparse.Namespace) -> int:
    with _open_runtime(args) as runtime:
        envelope = asyncio.run(
            RecommendationGateway.from_runtime(runtime).update_recommendation_status(
                args.recommendation_id, args.status, notes=args.notes
            )
        )
    failure_code = ExitCode.CONFIG_ERROR
    if envelope.get("message") == STORE_UNAVAILABLE_MESSAGE:
        failure_code = ExitCode.STORE_ERROR
    return _finish(args, "set-status", envelope, failure_code=failure_code)


def _cmd_history(args: argparse.Namespace) -> int:
    recommendation_id = _positive_id(args.recommendation_id, label="recommendation")
    with _open_runtime(args) as runtime:
        try:
            rows = asyncio.run(runtime.persistence.status_history(recommendation_id))
        except StoreError as exc:
            raise CLIError(str(exc), exit_code=int(ExitCode.STORE_ERROR)) from exc

    if _flag(args, "json"):
        _emit_json(
            {"command": "history", "recommendation_id": recommendation_id, "history": rows}
        )
        return int(ExitCode.SUCCESS)

    renderer = _get_renderer(args)
    if not rows:
        renderer.text("No status changes recorded.")
        return int(ExitCode.SUCCESS)
    renderer.table(
        ("CHANGED AT", "FROM", "TO", "NOTES"),
        [
            [
                str(row.get("changed_at", "")),
                str(row.get("old_status") or "-"),
                str(row.get("new_status", "")),
                str(row.get("notes") or ""),
            ]
            for row in rows
        ],
    )
    return int(ExitCode.SUCCESS)


def _cmd_quick_wins(args: argparse.Namespace) -> int:
    if args.limit <= 0:
        raise CLIError("--limit must be > 0", exit_code=int(ExitCode.CONFIG_ERROR))
    with _open_runtime(args) as runtime:
        envelope = asyncio.run(
            RecommendationGateway.from_runtime(runtime).get_quick_wins(
                args.analysis_id, limit=args.limit
            )
        )

    def _render(renderer: CLIRenderer) -> None:
        records = envelope.get("quick_wins")
        if isinstance(records, list) and records:
            renderer.records(records, title="Quick wins")
        else:
            renderer.text("No quick wins pending.")

    failure_code = ExitCode.CONFIG_ERROR
    if envelope.get("message") == STORE_UNAVAILABLE_MESSAGE:
        failure_code = ExitCode.STORE_ERROR
    return _finish(args, "quick-wins", envelope, failure_code=failure_code, render=_render)


def _cmd_verify_flow(args: argparse.Namespace) -> int:
    records = args.records
    if records is not None and records <= 0:
        raise CLIError("--records must be > 0", exit_code=int(ExitCode.CONFIG_ERROR))
    with _open_runtime(args) as runtime:
        report = asyncio.run(RecommendationGateway.from_runtime(runtime).verify_flow(records))

    if _flag(args, "json"):
        _emit_json({"command": "verify-flow", **report})
    else:
        _get_renderer(args).flow(report)
    passed = report.get("overall_status") == "PASS"
    return int(ExitCode.SUCCESS if passed else ExitCode.VERIFICATION_FAILED)


def _cmd_health(args: argparse.Namespace) -> int:
    with _open_runtime(args) as runtime:
        gateway = RecommendationGateway.from_runtime(runtime)
        flow_report = asyncio.run(gateway.verify_flow()) if _flag(args, "with_flow") else None
        status = asyncio.run(gateway.health_check())
        metrics = gateway.health_metrics() if _flag(args, "metrics") else None

    payload: dict[str, Any] = {"command": "health", "health": status}
    if metrics is not None:
        payload["metrics"] = metrics
    if flow_report is not None:
        payload["flow"] = flow_report

    if _flag(args, "json"):
        _emit_json(payload)
    else:
        renderer = _get_renderer(args)
        renderer.health(status)
        if metrics is not None:
            renderer.metrics(metrics)
        if flow_report is not None:
            renderer.text("")
            renderer.flow(flow_report)

    failed = status.get("overall") == "critical"
    if flow_report is not None and flow_report.get("overall_status") != "PASS":
        failed = True
    return int(ExitCode.VERIFICATION_FAILED if failed else ExitCode.SUCCESS)


def _cmd_config(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    profile = _optional_str(getattr(args, "profile", None))
    redacted = effective_config(config)

    payload: dict[str, object] = {
        "command": "config",
        "active_profile": profile,
        "config": redacted,
    }

    if _flag(args, "json"):
        _emit_json(payload)
        return int(ExitCode.SUCCESS)

    renderer = _get_renderer(args)
    renderer.kv("Active profile", profile or "(default)")
    renderer.text(json.dumps(redacted, indent=2, sort_keys=True, ensure_ascii=False))
    return int(ExitCode.SUCCESS)


def _cmd_console(args: argparse.Namespace) -> int:
    from recommendation_ledger.ui.console import run_console

    refresh = args.refresh
    if refresh is not None and refresh <= 0:
        raise CLIError("--refresh must be > 0", exit_code=int(ExitCode.CONFIG_ERROR))
    return run_console(_load_effective_config(args), refresh_seconds=refresh)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(verbose=_flag(args, "verbose"))


def _finish(
    args: argparse.Namespace,
    command: str,
    envelope: Mapping[str, Any],
    *,
    failure_code: ExitCode,
    render: Any | None = None,
) -> int:
    success = bool(envelope.get("success"))
    if _flag(args, "json"):
        _emit_json({"command": command, **envelope})
    elif not success:
        print(f"error: {envelope.get('message', 'operation failed')}", file=sys.stderr)
        errors = envelope.get("errors")
        if _flag(args, "verbose") and isinstance(errors, list):
            for item in errors:
                print(f"  {item}", file=sys.stderr)
    else:
        renderer = _get_renderer(args)
        if render is not None:
            render(renderer)
        elif envelope.get("message"):
            renderer.text(str(envelope["message"]))
    return int(ExitCode.SUCCESS if success else failure_code)


def _load_effective_config(args: argparse.Namespace) -> dict[str, Any]:
    config_path = _optional_str(getattr(args, "config_path", None))
    profile = _optional_str(getattr(args, "profile", None))
    overrides: dict[str, object] = {}
    database_path = _optional_str(getattr(args, "database_path", None))
    if database_path is not None:
        overrides["database.path"] = database_path

    try:
        return load_config(config_path, profile=profile, cli_overrides=overrides)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=int(ExitCode.CONFIG_ERROR)) from exc


def _open_runtime(args: argparse.Namespace) -> LedgerRuntime:
    config = _load_effective_config(args)
    try:
        return build_runtime(config, configure_logging=True)
    except StoreError as exc:
        raise CLIError(
            f"record store unavailable: {exc}", exit_code=int(ExitCode.STORE_ERROR)
        ) from exc


def _load_records_file(path: Path) -> object:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise CLIError(
            f"unable to read {path}: {exc}", exit_code=int(ExitCode.CONFIG_ERROR)
        ) from exc
    try:
        parsed = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise CLIError(
            f"invalid JSON/YAML in {path}: {exc}", exit_code=int(ExitCode.CONFIG_ERROR)
        ) from exc
    if isinstance(parsed, Mapping) and "recommendations" in parsed:
        return parsed["recommendations"]
    return parsed


def _positive_id(value: str, *, label: str = "analysis") -> int:
    try:
        return coerce_positive_id(value, label=label)
    except InvalidReference as exc:
        raise CLIError(str(exc), exit_code=int(ExitCode.CONFIG_ERROR)) from exc


def _optional_str(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


__all__ = ["CLIError", "build_parser", "run_cli"]
