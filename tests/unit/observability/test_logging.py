"""
recommendation-ledger — unit tests for structured logging

File: tests/unit/observability/test_logging.py

Purpose
- Validate JSON-lines output, redaction and correlation fields.
- Validate the structlog bridge, queue draining on shutdown and thread safety.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import threading
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest
import structlog

from recommendation_ledger.observability.logging import (
    LoggingConfig,
    correlation_scope,
    default_log_redactor,
    get_active_logging_handle,
    get_correlation_context,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def _cleanup_logging() -> Iterator[None]:
    yield
    shutdown_logging()
    structlog.reset_defaults()


def _logger_name() -> str:
    return f"recommendation_ledger.tests.logging.{uuid4().hex}"


def _read_json_lines(path: Path) -> list[dict[str, object]]:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


def test_json_lines_redact_secrets_and_carry_correlation_fields(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(run_id="run-redaction", base_log_dir=tmp_path, logger_name=logger_name)
    )
    logger = logging.getLogger(logger_name)

    with correlation_scope(analysis_id=42, test_id="flow-1", correlation_id=None):
        logger.info(
            "payload token=tok-FAKE and api_key=sk-FAKE123",
            extra={"nested": {"password": "hunter2", "safe": "ok"}},
        )

    shutdown_logging(handle)

    (line,) = _read_json_lines(handle.log_path)
    assert line["run_id"] == "run-redaction"
    assert line["analysis_id"] == "42"
    assert line["test_id"] == "flow-1"
    assert "correlation_id" not in line
    assert line["fields"] == {"nested": {"password": "***REDACTED***", "safe": "ok"}}

    raw = handle.log_path.read_text(encoding="utf-8")
    assert "tok-FAKE" not in raw
    assert "sk-FAKE" not in raw
    assert "hunter2" not in raw


def test_correlation_scope_nests_and_restores() -> None:
    assert get_correlation_context() == {}
    with correlation_scope(analysis_id=1):
        with correlation_scope(test_id="t-1"):
            assert get_correlation_context() == {"analysis_id": "1", "test_id": "t-1"}
        assert get_correlation_context() == {"analysis_id": "1"}
    assert get_correlation_context() == {}

    with pytest.raises(ValueError, match="boolean"):
        with correlation_scope(analysis_id=True):
            pass


def test_setup_logging_bridges_structlog_events(tmp_path: Path) -> None:
    handle = setup_logging(
        {"log_level": "INFO", "log_dir": str(tmp_path), "redact_secrets": True},
        run_id="run-bridge",
        logger_name="recommendation_ledger",
    )
    log = structlog.get_logger("recommendation_ledger.persistence.recommendations")

    with correlation_scope(analysis_id=7):
        log.info("recommendations_saved", saved_count=3, token="t-123")
    log.debug("below_the_level")
    shutdown_logging()

    assert handle.run_log_dir == tmp_path / "run-bridge"
    assert handle.log_path.name == "ledger.jsonl"
    (line,) = _read_json_lines(handle.log_path)
    assert line["event"] == "recommendations_saved"
    assert line["level"] == "INFO"
    assert line["analysis_id"] == "7"
    assert line["fields"] == {"saved_count": 3, "token": "***REDACTED***"}
    assert str(line["timestamp"]).endswith("Z")


def test_redaction_can_be_disabled(tmp_path: Path) -> None:
    handle = setup_logging(
        {"log_dir": str(tmp_path), "redact_secrets": False},
        run_id="run-plain",
        logger_name=_logger_name(),
    )
    handle.logger.info("token=visible", extra={"password": "visible-too"})
    shutdown_logging(handle)

    raw = handle.log_path.read_text(encoding="utf-8")
    assert "token=visible" in raw
    assert "visible-too" in raw


def test_exceptions_are_rendered_and_redacted(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(run_id="run-exc", base_log_dir=tmp_path, logger_name=logger_name)
    )
    logger = logging.getLogger(logger_name)

    try:
        raise RuntimeError("connect failed password=swordfish")
    except RuntimeError:
        logger.exception("store_failure")
    shutdown_logging(handle)

    (line,) = _read_json_lines(handle.log_path)
    assert line["event"] == "store_failure"
    assert "RuntimeError" in str(line["exception"])
    assert "swordfish" not in str(line["exception"])


def test_multithreaded_logging_produces_valid_json_lines(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(
            run_id="run-threaded",
            base_log_dir=tmp_path,
            logger_name=logger_name,
            queue_size=4096,
        )
    )
    logger = logging.getLogger(logger_name)
    total_threads = 8
    per_thread = 40

    def worker(thread_idx: int) -> None:
        with correlation_scope(test_id=f"thread-{thread_idx}"):
            for i in range(per_thread):
                logger.info("write %s token=tok-%s", i, thread_idx)

    threads = [threading.Thread(target=worker, args=(idx,)) for idx in range(total_threads)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    shutdown_logging(handle)

    lines = _read_json_lines(handle.log_path)
    assert len(lines) == total_threads * per_thread
    assert {line["test_id"] for line in lines} == {f"thread-{i}" for i in range(total_threads)}
    assert not any("tok-" in str(line["event"]) for line in lines)


def test_queue_is_non_blocking_and_shutdown_drains_it(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(
            run_id="run-flush", base_log_dir=tmp_path, logger_name=logger_name, queue_size=10_000
        )
    )
    logger = logging.getLogger(logger_name)
    assert any(isinstance(h, logging.handlers.QueueHandler) for h in logger.handlers)

    for i in range(300):
        logger.info("message %s", i)
    shutdown_logging(handle)

    assert handle.is_shutdown
    assert handle.dropped_records == 0
    assert len(handle.log_path.read_text(encoding="utf-8").splitlines()) == 300
    assert get_active_logging_handle() is None


def test_new_setup_replaces_the_active_handle(tmp_path: Path) -> None:
    first = setup_structured_logging(
        LoggingConfig(run_id="run-a", base_log_dir=tmp_path, logger_name=_logger_name())
    )
    second = setup_structured_logging(
        LoggingConfig(run_id="run-b", base_log_dir=tmp_path, logger_name=_logger_name())
    )

    assert first.is_shutdown
    assert get_active_logging_handle() is second


@pytest.mark.parametrize(
    ("config", "message"),
    [
        ({"run_id": " "}, "run_id"),
        ({"run_id": "r", "queue_size": 0}, "queue_size"),
        ({"run_id": "r", "log_filename": "nested/out.jsonl"}, "path separators"),
        ({"run_id": "r", "level": "LOUD"}, "unsupported logging level"),
    ],
)
def test_invalid_logging_config_is_rejected(
    tmp_path: Path, config: dict[str, object], message: str
) -> None:
    with pytest.raises(ValueError, match=message):
        setup_structured_logging(
            LoggingConfig(base_log_dir=tmp_path, **config)  # type: ignore[arg-type]
        )


def test_default_redactor_handles_nested_values() -> None:
    redacted = default_log_redactor(
        {
            "headers": {"Authorization": "Bearer abc.def", "accept": "json"},
            "notes": ["Bearer abc.def", "plain"],
            "count": 3,
        }
    )

    assert redacted == {
        "headers": {"Authorization": "***REDACTED***", "accept": "json"},
        "notes": ["Bearer ***REDACTED***", "plain"],
        "count": 3,
    }
