"""
recommendation-ledger — unit tests for the process entrypoint

File: tests/unit/test_main.py

Purpose
- Validate exit-code routing for config, input, store and unexpected failures.
"""

from __future__ import annotations

from collections.abc import Callable

import pytest

import recommendation_ledger.ui.cli as cli_module
from recommendation_ledger.config.loader import ConfigLoadError
from recommendation_ledger.config.schema import ConfigValidationError, ConfigValidationIssue
from recommendation_ledger.errors import InvalidReference, StoreError, StoreUnavailable
from recommendation_ledger.main import ExitCode, cli_entrypoint


def _raise(exc: BaseException) -> Callable[[object], int]:
    def _run(argv: object) -> int:
        raise exc

    return _run


def test_exit_code_values_are_stable() -> None:
    assert [int(item) for item in ExitCode] == [0, 1, 2, 3, 4]


@pytest.mark.parametrize("returned", [0, 1, 2, 3, None])
def test_known_codes_pass_through(monkeypatch: pytest.MonkeyPatch, returned: int | None) -> None:
    monkeypatch.setattr(cli_module, "run_cli", lambda argv: returned)

    assert cli_entrypoint([]) == (returned or 0)


def test_unknown_code_becomes_internal_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli_module, "run_cli", lambda argv: 42)

    assert cli_entrypoint([]) == ExitCode.INTERNAL_ERROR


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (ConfigLoadError("config file not found: /x"), ExitCode.CONFIG_ERROR),
        (
            ConfigValidationError((ConfigValidationIssue("database.path", "must not be empty"),)),
            ExitCode.CONFIG_ERROR,
        ),
        (InvalidReference("Analysis ID 9 does not exist"), ExitCode.CONFIG_ERROR),
        (FileNotFoundError("records.yaml"), ExitCode.CONFIG_ERROR),
        (StoreUnavailable("database is locked"), ExitCode.STORE_ERROR),
        (RuntimeError("boom"), ExitCode.INTERNAL_ERROR),
    ],
)
def test_exceptions_route_to_exit_codes(
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
    exc: BaseException,
    expected: ExitCode,
) -> None:
    monkeypatch.setattr(cli_module, "run_cli", _raise(exc))

    assert cli_entrypoint([]) == expected

    err = capsys.readouterr().err
    if expected is ExitCode.INTERNAL_ERROR:
        assert "Traceback" in err
    else:
        assert str(exc).splitlines()[0] in err


def test_wrapped_store_error_is_found_in_the_chain(monkeypatch: pytest.MonkeyPatch) -> None:
    def _run(argv: object) -> int:
        try:
            raise StoreError("disk I/O error")
        except StoreError as exc:
            raise RuntimeError("save failed") from exc

    monkeypatch.setattr(cli_module, "run_cli", _run)

    assert cli_entrypoint([]) == ExitCode.STORE_ERROR


def test_system_exit_codes_are_normalized(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setattr(cli_module, "run_cli", _raise(SystemExit(2)))
    assert cli_entrypoint([]) == ExitCode.CONFIG_ERROR

    monkeypatch.setattr(cli_module, "run_cli", _raise(SystemExit("fatal: bad option")))
    assert cli_entrypoint([]) == ExitCode.INTERNAL_ERROR
    assert "fatal: bad option" in capsys.readouterr().err
