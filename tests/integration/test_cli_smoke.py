"""
recommendation-ledger — CLI subprocess smoke contracts

File: tests/integration/test_cli_smoke.py

Purpose
- Exercise `python -m recommendation_ledger` end to end in a fresh process.
- Verify exit codes, JSON output and the persistent store and run-log side effects.
"""

from __future__ import annotations

import json
import os
import sqlite3
import subprocess
import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[2]
SRC_PATH = PROJECT_ROOT / "src"

pytestmark = pytest.mark.integration


def _run_cli(workdir: Path, *args: str) -> subprocess.CompletedProcess[str]:
    env = {key: value for key, value in os.environ.items() if not key.startswith("LEDGER_")}
    existing_pythonpath = env.get("PYTHONPATH")
    src_pythonpath = str(SRC_PATH)
    env["PYTHONPATH"] = (
        src_pythonpath if not existing_pythonpath else f"{src_pythonpath}:{existing_pythonpath}"
    )
    return subprocess.run(
        [sys.executable, "-m", "recommendation_ledger", *args],
        cwd=workdir,
        text=True,
        capture_output=True,
        check=False,
        env=env,
    )


def _write(path: Path, contents: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(contents, encoding="utf-8")


def test_save_and_fetch_through_a_subprocess(tmp_path: Path) -> None:
    database = tmp_path / "data" / "ledger.sqlite3"
    records = tmp_path / "recs.json"
    _write(
        records,
        json.dumps(
            [
                {
                    "title": "Add alt text",
                    "priority": "high",
                    "category": "a11y",
                    "effort": "quick",
                },
                {
                    "title": "Split bundle",
                    "priority": "medium",
                    "category": "perf",
                    "effort": "hard",
                },
            ]
        ),
    )

    created = _run_cli(tmp_path, "create-analysis", "Smoke", "--database", str(database), "--json")
    assert created.returncode == 0, created.stderr
    analysis_id = json.loads(created.stdout)["analysis_id"]

    saved = _run_cli(
        tmp_path, "save", str(analysis_id), str(records), "--database", str(database), "--json"
    )
    assert saved.returncode == 0, saved.stderr
    assert json.loads(saved.stdout)["saved_count"] == 2

    fetched = _run_cli(tmp_path, "fetch", str(analysis_id), "--database", str(database))
    assert fetched.returncode == 0, fetched.stderr
    assert "Add alt text" in fetched.stdout
    assert "Total: 2" in fetched.stdout

    with sqlite3.connect(database) as conn:
        (count,) = conn.execute(
            "SELECT COUNT(*) FROM recommendations WHERE analysis_id = ?", (analysis_id,)
        ).fetchone()
    assert count == 2

    run_logs = sorted((tmp_path / "logs").glob("*/ledger.jsonl"))
    assert len(run_logs) == 3
    events = [
        json.loads(line)["event"]
        for path in run_logs
        for line in path.read_text(encoding="utf-8").splitlines()
    ]
    assert "recommendations_saved" in events


def test_verify_flow_and_exit_codes(tmp_path: Path) -> None:
    database = tmp_path / "ledger.sqlite3"

    flow = _run_cli(tmp_path, "verify-flow", "--records", "5", "--database", str(database))
    assert flow.returncode == 0, flow.stderr
    assert flow.stdout.startswith("Flow verification: PASS")

    missing_file = _run_cli(tmp_path, "save", "1", "nope.yaml", "--database", str(database))
    assert missing_file.returncode == 2
    assert "unable to read" in missing_file.stderr

    _write(tmp_path / "ledger.toml", "[meta]\nschema_version = 9\n")
    bad_config = _run_cli(tmp_path, "init-db")
    assert bad_config.returncode == 2
    assert "upgrade the recommendation-ledger runtime" in bad_config.stderr


def test_unknown_command_is_a_usage_error(tmp_path: Path) -> None:
    completed = _run_cli(tmp_path, "explode")

    assert completed.returncode == 2
    assert "invalid choice" in completed.stderr
