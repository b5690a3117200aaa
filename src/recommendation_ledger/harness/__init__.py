"""Flow-verification harness and correlation tracking."""

from recommendation_ledger.harness.correlation import (
    CorrelationRecord,
    CorrelationTracker,
    TrackedOperation,
)
from recommendation_ledger.harness.flow import (
    FlowReport,
    FlowVerificationHarness,
    generate_test_records,
)

__all__ = [
    "CorrelationRecord",
    "CorrelationTracker",
    "FlowReport",
    "FlowVerificationHarness",
    "TrackedOperation",
    "generate_test_records",
]
