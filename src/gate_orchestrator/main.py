"""Executable CLI entrypoint for ``gate_orchestrator``.

Exit codes: 0 all configurations passed, 1 a configuration failed or a tool could not
be started, 2 invalid configuration (unknown profile, bad axis, invalid ``gate.toml``,
bad flags).
"""

from __future__ import annotations

import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING

from gate_orchestrator.errors import ConfigurationError, GateError

if TYPE_CHECKING:
    from collections.abc import Sequence


class ExitCode(IntEnum):
    """Deterministic process exit-code contract."""

    SUCCESS = 0
    FAILED = 1
    CONFIG_ERROR = 2


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Entrypoint used by ``python -m gate_orchestrator`` and the ``gate`` script."""

    try:
        from gate_orchestrator.ui.cli import run_cli

        return _as_exit_code(run_cli(argv))
    except SystemExit as exc:
        # argparse exits 2 on usage errors and 0 for --help.
        return _as_exit_code(exc.code)
    except KeyboardInterrupt:
        _write_stderr("interrupted")
        return int(ExitCode.FAILED)
    except GateError as exc:
        _write_stderr(f"error: {exc}")
        return int(ExitCode.CONFIG_ERROR if _caused_by_config(exc) else ExitCode.FAILED)
    except Exception as exc:  # noqa: BLE001 - CLI boundary normalization.
        traceback.print_exception(type(exc), exc, exc.__traceback__, file=sys.stderr)
        return int(ExitCode.CONFIG_ERROR if _caused_by_config(exc) else ExitCode.FAILED)


def _as_exit_code(raw_code: object) -> int:
    if raw_code is None:
        return int(ExitCode.SUCCESS)
    if isinstance(raw_code, int) and raw_code in {code.value for code in ExitCode}:
        return raw_code
    if isinstance(raw_code, str) and raw_code.strip():
        _write_stderr(raw_code.strip())
    return int(ExitCode.FAILED)


def _caused_by_config(exc: BaseException) -> bool:
    current: BaseException | None = exc
    seen: set[int] = set()
    while current is not None and id(current) not in seen:
        if isinstance(current, ConfigurationError):
            return True
        seen.add(id(current))
        current = current.__cause__ or current.__context__
    return False


def _write_stderr(message: str) -> None:
    sys.stderr.write(message.rstrip("\n") + "\n")


__all__ = ["ExitCode", "cli_entrypoint"]
