"""Module entrypoint for ``python -m recommendation_ledger``."""

from __future__ import annotations

from recommendation_ledger.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
