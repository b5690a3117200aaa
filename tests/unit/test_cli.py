"""Unit tests for the CLI router — commands run in-process against a temp store.

File: tests/unit/test_cli.py
"""

from __future__ import annotations

import json
import os
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest
import structlog

import recommendation_ledger.ui.console as console_module
from recommendation_ledger.main import ExitCode
from recommendation_ledger.observability.logging import shutdown_logging
from recommendation_ledger.ui.cli import build_parser, run_cli

pytestmark = pytest.mark.unit

CliRunner = Callable[..., tuple[int, Any]]


@pytest.fixture
def cli(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> Iterator[CliRunner]:
    monkeypatch.chdir(tmp_path)
    for name in [key for key in os.environ if key.startswith("LEDGER_")]:
        monkeypatch.delenv(name)
    database = (tmp_path / "state" / "cli.sqlite3").as_posix()

    def _run(*argv: str, as_json: bool = True) -> tuple[int, Any]:
        args = [*argv, "--database", database]
        if as_json:
            args.append("--json")
        code = run_cli(args)
        out = capsys.readouterr().out
        return code, json.loads(out) if as_json and out.strip() else out

    yield _run
    shutdown_logging()
    structlog.reset_defaults()


def _write_records(path: Path, count: int) -> Path:
    lines = ["recommendations:"]
    for index in range(1, count + 1):
        lines.extend(
            [
                f"  - external_id: cli-{index}",
                f"    title: Fix item {index}",
                "    priority: critical" if index == 1 else "    priority: low",
                "    category: seo",
                "    effort: quick",
            ]
        )
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def _new_analysis(cli: CliRunner) -> int:
    code, payload = cli("create-analysis", "CLI audit")
    assert code == ExitCode.SUCCESS
    return int(payload["analysis_id"])


def test_parser_requires_a_command() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_init_db_reports_schema(cli: CliRunner, tmp_path: Path) -> None:
    code, payload = cli("init-db")

    assert code == ExitCode.SUCCESS
    assert payload["command"] == "init-db"
    assert payload["schema_version"] == 1
    assert "recommendations" in payload["tables"]
    assert (tmp_path / "state" / "cli.sqlite3").exists()
    assert any((tmp_path / "logs").glob("*/ledger.jsonl"))


def test_save_fetch_and_audit_round(cli: CliRunner, tmp_path: Path) -> None:
    analysis_id = _new_analysis(cli)
    records = _write_records(tmp_path / "recs.yaml", 3)

    save_code, saved = cli("save", str(analysis_id), str(records))
    fetch_code, fetched = cli("fetch", str(analysis_id))
    audit_ok, _ = cli("audit", str(analysis_id), "--expected", "3")
    audit_bad, audited = cli("audit", str(analysis_id), "--expected", "4")

    assert save_code == ExitCode.SUCCESS
    assert saved["verification_result"]["verified"] is True
    assert fetch_code == ExitCode.SUCCESS
    assert [item["external_id"] for item in fetched["recommendations"]] == [
        "cli-1",
        "cli-2",
        "cli-3",
    ]
    assert audit_ok == ExitCode.SUCCESS
    assert audit_bad == ExitCode.VERIFICATION_FAILED
    assert audited["integrity_score"] == 90


def test_append_keeps_existing_rows(cli: CliRunner, tmp_path: Path) -> None:
    analysis_id = _new_analysis(cli)
    first = _write_records(tmp_path / "first.yaml", 2)
    more = tmp_path / "more.json"
    more.write_text(
        json.dumps([{"title": "Extra", "priority": "high", "category": "ux", "effort": "easy"}]),
        encoding="utf-8",
    )

    cli("save", str(analysis_id), str(first))
    code, payload = cli("save", str(analysis_id), str(more), "--append")

    assert code == ExitCode.SUCCESS
    assert payload["verification_result"] == {
        "expected_count": 3,
        "actual_count": 3,
        "verified": True,
    }


def test_save_failures_map_to_exit_codes(cli: CliRunner, tmp_path: Path) -> None:
    records = _write_records(tmp_path / "recs.yaml", 1)
    broken = tmp_path / "broken.yaml"
    broken.write_text("recommendations: [unclosed", encoding="utf-8")

    bad_id, payload = cli("save", "abc", str(records))
    unknown, _ = cli("save", "999", str(records))
    missing, _ = cli("save", "1", str(tmp_path / "absent.yaml"), as_json=False)
    invalid, _ = cli("save", "1", str(broken), as_json=False)

    assert bad_id == ExitCode.CONFIG_ERROR
    assert payload["error_type"] == "invalid_reference"
    assert unknown == ExitCode.CONFIG_ERROR
    assert missing == ExitCode.CONFIG_ERROR
    assert invalid == ExitCode.CONFIG_ERROR


def test_status_history_and_quick_wins(cli: CliRunner, tmp_path: Path) -> None:
    analysis_id = _new_analysis(cli)
    cli("save", str(analysis_id), str(_write_records(tmp_path / "recs.yaml", 2)))
    _, fetched = cli("fetch", str(analysis_id))
    first_id = fetched["recommendations"][0]["id"]

    _, wins = cli("quick-wins", str(analysis_id))
    status_code, _ = cli("set-status", str(first_id), "completed", "--notes", "shipped")
    _, history = cli("history", str(first_id))
    _, wins_after = cli("quick-wins", str(analysis_id))
    bad_status, _ = cli("set-status", str(first_id), "archived")
    bad_limit, _ = cli("quick-wins", str(analysis_id), "--limit", "0", as_json=False)

    assert [item["external_id"] for item in wins["quick_wins"]] == ["cli-1"]
    assert status_code == ExitCode.SUCCESS
    assert history["history"][-1]["new_status"] == "completed"
    assert history["history"][-1]["notes"] == "shipped"
    assert wins_after["count"] == 0
    assert bad_status == ExitCode.CONFIG_ERROR
    assert bad_limit == ExitCode.CONFIG_ERROR


def test_verify_flow_and_health(cli: CliRunner) -> None:
    flow_code, report = cli("verify-flow", "--records", "3")
    health_code, health = cli("health", "--metrics", "--with-flow")

    assert flow_code == ExitCode.SUCCESS
    assert report["overall_status"] == "PASS"
    assert report["flow"]["metrics"]["record_count"] == 3
    assert health_code == ExitCode.SUCCESS
    assert health["health"]["overall"] == "healthy"
    assert health["metrics"]["total_operations"] > 0
    assert health["flow"]["overall_status"] == "PASS"


def test_plain_text_output(cli: CliRunner) -> None:
    code, out = cli("verify-flow", "--records", "2", as_json=False)

    assert code == ExitCode.SUCCESS
    assert out.startswith("Flow verification: PASS")


def test_config_command_shows_profile(cli: CliRunner) -> None:
    code, payload = cli("config", "--profile", "ci")

    assert code == ExitCode.SUCCESS
    assert payload["active_profile"] == "ci"
    assert payload["config"]["observability"]["log_level"] == "WARNING"
    assert payload["config"]["database"]["path"].endswith("state/cli.sqlite3")


def test_bad_config_file_is_a_config_error(cli: CliRunner, tmp_path: Path) -> None:
    config_path = tmp_path / "ledger.toml"
    config_path.write_text("[persistence]\nmax_batch_size = 0\n", encoding="utf-8")

    code, _ = cli("init-db", as_json=False)

    assert code == ExitCode.CONFIG_ERROR


def test_console_without_textual_exits_with_hint(
    cli: CliRunner, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(console_module, "console_available", lambda: False)

    code, _ = cli("console", as_json=False)
    bad_refresh, _ = cli("console", "--refresh", "0", as_json=False)

    assert code == ExitCode.CONFIG_ERROR
    assert bad_refresh == ExitCode.CONFIG_ERROR
