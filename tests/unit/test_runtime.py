"""
recommendation-ledger — unit tests for runtime wiring

File: tests/unit/test_runtime.py

Purpose
- Validate that one config mapping wires store, monitor, persistence and harness together.
- Validate logging setup and shutdown ordering on close.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from pathlib import Path

import pytest
import structlog

from recommendation_ledger.config.schema import ConfigValidationError, default_config, merge_config
from recommendation_ledger.observability.logging import get_active_logging_handle, shutdown_logging
from recommendation_ledger.runtime import build_runtime, health_thresholds


@pytest.fixture(autouse=True)
def _reset_logging() -> Iterator[None]:
    yield
    shutdown_logging()
    structlog.reset_defaults()


def _config(tmp_path: Path, **sections: dict[str, object]) -> dict[str, object]:
    base = merge_config(
        default_config(),
        {
            "database": {"path": (tmp_path / "state" / "ledger.sqlite3").as_posix()},
            "observability": {"log_dir": (tmp_path / "logs").as_posix()},
        },
    )
    return merge_config(base, sections)


def test_health_thresholds_follow_config(tmp_path: Path) -> None:
    config = _config(tmp_path, health={"window_size": 50, "consecutive_failures_threshold": 5})

    thresholds = health_thresholds(config)

    assert thresholds.window_size == 50
    assert thresholds.consecutive_failures_threshold == 5
    assert thresholds.slow_operation_ms == 5000.0


def test_build_runtime_wires_a_migrated_store(tmp_path: Path) -> None:
    config = _config(tmp_path, persistence={"max_batch_size": 7}, harness={"record_count": 3})

    with build_runtime(config) as runtime:
        assert runtime.store.path == tmp_path / "state" / "ledger.sqlite3"
        assert runtime.store.schema_version() == 1
        assert runtime.persistence.store is runtime.store
        assert runtime.persistence.monitor is runtime.monitor
        assert runtime.logging_handle is None
        assert runtime.config["persistence"]["max_batch_size"] == 7

    assert runtime.store.is_closed


def test_database_path_argument_overrides_config(tmp_path: Path) -> None:
    override = tmp_path / "other" / "custom.sqlite3"

    with build_runtime(_config(tmp_path), database_path=override) as runtime:
        assert runtime.store.path == override

    assert override.exists()


def test_build_runtime_rejects_invalid_config(tmp_path: Path) -> None:
    config = _config(tmp_path, persistence={"max_batch_size": 0})

    with pytest.raises(ConfigValidationError, match="persistence.max_batch_size"):
        build_runtime(config)


@pytest.mark.asyncio
async def test_runtime_components_cooperate(tmp_path: Path) -> None:
    with build_runtime(_config(tmp_path)) as runtime:
        analysis_id = await runtime.persistence.create_analysis("Runtime check")
        outcome = await runtime.persistence.save(
            analysis_id,
            [
                {
                    "title": "Compress images",
                    "priority": "high",
                    "category": "performance",
                    "effort": "quick",
                }
            ],
        )
        report = runtime.auditor.audit(analysis_id, expected_count=1)

    assert outcome.success
    assert report.is_consistent
    assert runtime.monitor.performance_stats().total_operations == 1


def test_configured_logging_writes_run_log_and_closes(tmp_path: Path) -> None:
    runtime = build_runtime(_config(tmp_path), configure_logging=True, run_id="run-runtime")
    handle = runtime.logging_handle

    assert handle is not None
    assert get_active_logging_handle() is handle
    runtime.close()

    assert handle.is_shutdown
    assert runtime.logging_handle is None
    log_path = tmp_path / "logs" / "run-runtime" / "ledger.jsonl"
    events = [json.loads(line)["event"] for line in log_path.read_text("utf-8").splitlines()]
    assert "runtime_ready" in events
