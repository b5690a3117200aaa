"""
recommendation-ledger — package root

File: src/recommendation_ledger/__init__.py

Purpose
- Durable storage of analysis-derived recommendation batches, with post-write
  verification, on-demand consistency audits and a rolling health monitor.

Import boundary rules
- No side effects at import time (no config loading, no logging init, no DB access).
- Heavy subsystems are imported from their own modules, not re-exported here.
"""

from __future__ import annotations

__version__ = "0.1.0"

__all__ = ["__version__"]
