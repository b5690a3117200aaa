"""Process entrypoint: runs the CLI and maps every outcome onto an ``ExitCode``."""

from __future__ import annotations

import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class ExitCode(IntEnum):
    SUCCESS = 0
    VERIFICATION_FAILED = 1
    CONFIG_ERROR = 2
    STORE_ERROR = 3
    INTERNAL_ERROR = 4


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Run the CLI; unhandled failures are reported on stderr and mapped to an exit code."""

    try:
        from recommendation_ledger.ui.cli import run_cli

        return _as_exit_code(run_cli(argv))
    except SystemExit as exc:
        return _as_exit_code(exc.code)
    except BaseException as exc:  # noqa: BLE001 - last line before the process exits
        code = _classify(exc)
        if code is ExitCode.INTERNAL_ERROR:
            traceback.print_exception(type(exc), exc, exc.__traceback__, file=sys.stderr)
        else:
            _stderr(str(exc).strip() or type(exc).__name__)
        return int(code)


def console_main() -> None:
    raise SystemExit(cli_entrypoint())


def _as_exit_code(value: object) -> int:
    if value is None:
        return int(ExitCode.SUCCESS)
    if isinstance(value, int) and value in {int(code) for code in ExitCode}:
        return value
    if isinstance(value, str) and value.strip():
        _stderr(value.strip())
    return int(ExitCode.INTERNAL_ERROR)


def _classify(exc: BaseException) -> ExitCode:
    from recommendation_ledger.config.loader import ConfigLoadError
    from recommendation_ledger.config.schema import ConfigValidationError
    from recommendation_ledger.errors import InvalidReference, StoreError, ValidationError

    routes: tuple[tuple[tuple[type[BaseException], ...], ExitCode], ...] = (
        (
            (
                ConfigLoadError,
                ConfigValidationError,
                ValidationError,
                InvalidReference,
                FileNotFoundError,
                NotADirectoryError,
                PermissionError,
            ),
            ExitCode.CONFIG_ERROR,
        ),
        ((StoreError,), ExitCode.STORE_ERROR),
    )
    for link in _causes(exc):
        for kinds, code in routes:
            if isinstance(link, kinds):
                return code
    return ExitCode.INTERNAL_ERROR


def _causes(exc: BaseException) -> Iterator[BaseException]:
    """``exc`` followed by its explicit cause or unsuppressed context, once each."""

    visited: set[int] = set()
    link: BaseException | None = exc
    while link is not None and id(link) not in visited:
        visited.add(id(link))
        yield link
        if link.__cause__ is not None:
            link = link.__cause__
        elif not link.__suppress_context__:
            link = link.__context__
        else:
            link = None


def _stderr(message: str) -> None:
    sys.stderr.write(message.rstrip("\n") + "\n")


__all__ = ["ExitCode", "cli_entrypoint", "console_main"]
