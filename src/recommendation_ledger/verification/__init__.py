"""Verification package: post-write count checks and the consistency auditor."""

from recommendation_ledger.verification.auditor import (
    ConsistencyAuditor,
    inspect_record,
    integrity_score,
)
from recommendation_ledger.verification.post_write import PostWriteVerifier

__all__ = ["ConsistencyAuditor", "PostWriteVerifier", "inspect_record", "integrity_score"]
