"""
recommendation-ledger — application root.

File: src/recommendation_ledger/runtime.py

Purpose
- Build every long-lived component from one validated config mapping.
- Own the shutdown order: logging flushes last so close events are captured.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog

from recommendation_ledger.config.schema import assert_valid_config, default_config
from recommendation_ledger.harness.correlation import CorrelationTracker
from recommendation_ledger.harness.flow import FlowVerificationHarness
from recommendation_ledger.observability.health import HealthMonitor, HealthThresholds
from recommendation_ledger.observability.logging import (
    StructuredLoggingHandle,
    setup_logging,
    shutdown_logging,
)
from recommendation_ledger.persistence.recommendations import RecommendationPersistence
from recommendation_ledger.persistence.store import RecordStore
from recommendation_ledger.verification.auditor import ConsistencyAuditor
from recommendation_ledger.verification.post_write import PostWriteVerifier


@dataclass(slots=True)
class LedgerRuntime:
    """Wired component graph for one process."""

    config: dict[str, Any]
    store: RecordStore
    monitor: HealthMonitor
    verifier: PostWriteVerifier
    persistence: RecommendationPersistence
    auditor: ConsistencyAuditor
    tracker: CorrelationTracker
    harness: FlowVerificationHarness
    logging_handle: StructuredLoggingHandle | None = None

    def close(self) -> None:
        self.store.close()
        if self.logging_handle is not None:
            shutdown_logging(self.logging_handle)
            self.logging_handle = None

    def __enter__(self) -> LedgerRuntime:
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()


def health_thresholds(config: Mapping[str, Any]) -> HealthThresholds:
    health = config["health"]
    return HealthThresholds(
        window_size=int(health["window_size"]),
        retention_hours=float(health["retention_hours"]),
        slow_operation_ms=float(health["slow_operation_ms"]),
        critical_operation_ms=float(health["critical_operation_ms"]),
        min_success_rate=float(health["min_success_rate"]),
        critical_success_rate=float(health["critical_success_rate"]),
        consecutive_failures_threshold=int(health["consecutive_failures_threshold"]),
        recent_failures_limit=int(health["recent_failures_limit"]),
    )


def build_runtime(
    config: Mapping[str, Any] | None = None,
    *,
    database_path: str | Path | None = None,
    configure_logging: bool = False,
    run_id: str | None = None,
) -> LedgerRuntime:
    """Construct the store, monitor, verifier, persistence layer, auditor and harness.

    ``database_path`` overrides ``database.path`` without touching the rest of the
    config. When ``configure_logging`` is set, JSON-lines logging is started for
    ``run_id`` (a random id when omitted) before any component logs.
    """

    validated = assert_valid_config(default_config() if config is None else config)

    handle: StructuredLoggingHandle | None = None
    if configure_logging:
        handle = setup_logging(
            validated["observability"],
            run_id=run_id or f"run-{uuid.uuid4().hex[:12]}",
        )

    database = validated["database"]
    store = RecordStore(
        database_path if database_path is not None else database["path"],
        busy_timeout_ms=int(database["busy_timeout_ms"]),
        busy_retry_limit=int(database["busy_retry_limit"]),
        busy_retry_backoff_ms=int(database["busy_retry_backoff_ms"]),
    )
    store.migrate()

    monitor = HealthMonitor(health_thresholds(validated))
    verifier = PostWriteVerifier(store)
    persistence_cfg = validated["persistence"]
    persistence = RecommendationPersistence(
        store,
        monitor=monitor,
        verifier=verifier,
        max_batch_size=int(persistence_cfg["max_batch_size"]),
        fetch_timeout_ms=int(persistence_cfg["fetch_timeout_ms"]),
        fetch_retry_limit=int(persistence_cfg["fetch_retry_limit"]),
        fetch_retry_backoff_ms=int(persistence_cfg["fetch_retry_backoff_ms"]),
    )
    auditor = ConsistencyAuditor(store)
    tracker = CorrelationTracker()
    harness_cfg = validated["harness"]
    harness = FlowVerificationHarness(
        persistence,
        auditor,
        tracker=tracker,
        record_count=int(harness_cfg["record_count"]),
        max_duration_ms=float(harness_cfg["max_duration_ms"]),
    )

    structlog.get_logger(__name__).info(
        "runtime_ready",
        database_path=str(store.path),
        schema_version=store.schema_version(),
        logging_enabled=handle is not None,
    )
    return LedgerRuntime(
        config=validated,
        store=store,
        monitor=monitor,
        verifier=verifier,
        persistence=persistence,
        auditor=auditor,
        tracker=tracker,
        harness=harness,
        logging_handle=handle,
    )


__all__ = ["LedgerRuntime", "build_runtime", "health_thresholds"]
