"""Correlation trail bookkeeping."""

from __future__ import annotations

import threading

from recommendation_ledger.harness.correlation import CorrelationTracker


def test_track_reuses_one_correlation_id_per_analysis() -> None:
    tracker = CorrelationTracker()

    first = tracker.track(7, "save", success=True, details="ok")
    second = tracker.track(7, "fetch", success=True, details="ok")
    other = tracker.track(8, "save", success=True, details="ok")

    assert first == second
    assert first.startswith("corr-7-")
    assert other.startswith("corr-8-")

    record = tracker.get(7)
    assert record is not None
    assert record.operation_count == 2
    assert record.data_consistency
    assert [item.operation for item in record.operations] == ["save", "fetch"]


def test_failures_become_issues() -> None:
    tracker = CorrelationTracker()
    tracker.track(3, "save", success=True, details="ok")
    tracker.track(3, "fetch", success=False, details="timed out")

    record = tracker.get(3)

    assert record is not None
    assert not record.data_consistency
    assert record.issues == ("fetch failed: timed out",)
    payload = record.to_dict()
    assert payload["operation_count"] == 2
    assert payload["data_consistency"] is False
    assert str(payload["operations"][0]["timestamp"]).endswith("Z")  # type: ignore[index]


def test_forget_and_clear() -> None:
    tracker = CorrelationTracker()
    tracker.track(1, "save", success=True, details="ok")
    tracker.track(2, "save", success=True, details="ok")

    tracker.forget(1)
    tracker.forget(99)
    assert tracker.get(1) is None
    assert tracker.get(2) is not None

    tracker.clear()
    assert tracker.get(2) is None


def test_concurrent_tracking_keeps_every_operation() -> None:
    tracker = CorrelationTracker()

    def worker() -> None:
        for _ in range(50):
            tracker.track(5, "fetch", success=True, details="ok")

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    record = tracker.get(5)
    assert record is not None
    assert record.operation_count == 200
