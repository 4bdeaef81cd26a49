"""
gate-orchestrator — process executor.

File: src/gate_orchestrator/execution/executor.py

Purpose
- Define the single polymorphic capability used to invoke external tools:
  ``{argv, cwd, env, timeout}`` -> ``{exit code, combined output}``.
- Provide the local asyncio subprocess implementation.

Contract
- Exit code 0 means success; any other code is a failure decided by the caller.
- A timed-out invocation is killed together with its process group and reported with
  ``timed_out=True`` and no exit code. Cancellation kills the group the same way.
- A program that cannot be started raises ``ToolNotFoundError``; it is never reported
  as an exit code.
"""

from __future__ import annotations

import asyncio
import os
import signal
import sys
import time
from collections.abc import Mapping
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from gate_orchestrator.constants import DEFAULT_MAX_OUTPUT_CHARS
from gate_orchestrator.errors import ConfigurationError, ToolNotFoundError

_POSIX = sys.platform != "win32"
_KILL_GRACE_SECONDS = 5.0


@dataclass(frozen=True, slots=True)
class CommandSpec:
    """Portable command invocation contract."""

    argv: tuple[str, ...]
    cwd: str | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    timeout_seconds: float | None = None
    inherit_env: bool = True

    def __post_init__(self) -> None:
        argv = tuple(self.argv)
        if not argv or not all(isinstance(part, str) and part for part in argv):
            raise ValueError("CommandSpec.argv must be a non-empty tuple of non-empty strings")
        object.__setattr__(self, "argv", argv)
        object.__setattr__(self, "env", {key: self.env[key] for key in sorted(self.env)})
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValueError("CommandSpec.timeout_seconds must be > 0 when provided")

    @property
    def program(self) -> str:
        return self.argv[0]

    def build_env(self) -> dict[str, str]:
        if not self.inherit_env:
            return dict(self.env)
        env = dict(os.environ)
        env.update(self.env)
        return env

    def command_line(self) -> str:
        return " ".join(self.argv)


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Deterministic command execution outcome."""

    argv: tuple[str, ...]
    exit_code: int | None
    output: str
    duration_ms: int
    timed_out: bool = False

    def __post_init__(self) -> None:
        if self.duration_ms < 0:
            raise ValueError("CommandResult.duration_ms must be >= 0")
        if self.timed_out and self.exit_code is not None:
            raise ValueError("CommandResult.exit_code must be None when timed_out is true")
        if not self.timed_out and self.exit_code is None:
            raise ValueError("CommandResult.exit_code is required unless timed_out is true")

    @property
    def succeeded(self) -> bool:
        return not self.timed_out and self.exit_code == 0

    def to_dict(self) -> dict[str, object]:
        return {
            "argv": list(self.argv),
            "exit_code": self.exit_code,
            "output": self.output,
            "duration_ms": self.duration_ms,
            "timed_out": self.timed_out,
        }


@runtime_checkable
class CommandExecutor(Protocol):
    """Pluggable async command execution interface."""

    async def run(self, spec: CommandSpec) -> CommandResult: ...


class LocalSubprocessExecutor(CommandExecutor):
    """Async local subprocess executor with combined output capture and timeouts."""

    def __init__(
        self,
        *,
        default_timeout_seconds: float | None = None,
        max_output_chars: int | None = DEFAULT_MAX_OUTPUT_CHARS,
    ) -> None:
        if default_timeout_seconds is not None and default_timeout_seconds <= 0:
            raise ValueError("default_timeout_seconds must be > 0 when provided")
        if max_output_chars is not None and max_output_chars <= 0:
            raise ValueError("max_output_chars must be > 0 when provided")
        self._default_timeout_seconds = default_timeout_seconds
        self._max_output_chars = max_output_chars

    async def run(self, spec: CommandSpec) -> CommandResult:
        if spec.cwd is not None and not os.path.isdir(spec.cwd):
            raise ConfigurationError(f"working directory does not exist: {spec.cwd}")

        started_ns = time.monotonic_ns()
        timeout = (
            spec.timeout_seconds
            if spec.timeout_seconds is not None
            else self._default_timeout_seconds
        )

        try:
            process = await asyncio.create_subprocess_exec(
                *spec.argv,
                cwd=spec.cwd,
                env=spec.build_env(),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                start_new_session=_POSIX,
            )
        except (FileNotFoundError, PermissionError) as exc:
            raise ToolNotFoundError(spec.program, exc.strerror or str(exc)) from exc

        try:
            output_bytes = await _communicate_with_timeout(process, timeout)
            timed_out = False
            exit_code = process.returncode
        except _CommandTimeoutError as exc:
            output_bytes = exc.output
            timed_out = True
            exit_code = None

        return CommandResult(
            argv=spec.argv,
            exit_code=exit_code,
            output=_truncate_text(_normalize_output_text(output_bytes), self._max_output_chars),
            duration_ms=_elapsed_ms(started_ns),
            timed_out=timed_out,
        )


class _CommandTimeoutError(Exception):
    def __init__(self, output: bytes) -> None:
        super().__init__("command timed out")
        self.output = output


async def _communicate_with_timeout(
    process: asyncio.subprocess.Process,
    timeout_seconds: float | None,
) -> bytes:
    try:
        if timeout_seconds is None:
            stdout_bytes, _ = await process.communicate()
        else:
            stdout_bytes, _ = await asyncio.wait_for(
                process.communicate(), timeout=timeout_seconds
            )
        return stdout_bytes or b""
    except TimeoutError as exc:
        _kill_process_group(process)
        raise _CommandTimeoutError(await _drain_after_kill(process)) from exc
    except asyncio.CancelledError:
        _kill_process_group(process)
        await _drain_after_kill(process)
        raise


def _kill_process_group(process: asyncio.subprocess.Process) -> None:
    """Kill the child and everything it spawned.

    Build tools fork compilers and test binaries that inherit the output pipe, so
    killing only the direct child leaves ``communicate()`` blocked until they exit.
    On POSIX the child leads its own session, so its pid is also the group id.
    """

    if _POSIX:
        with suppress(ProcessLookupError, PermissionError):
            os.killpg(process.pid, signal.SIGKILL)
    with suppress(ProcessLookupError):
        process.kill()


async def _drain_after_kill(process: asyncio.subprocess.Process) -> bytes:
    # A descendant that left the process group can still hold the pipe open.
    try:
        stdout_bytes, _ = await asyncio.wait_for(
            process.communicate(), timeout=_KILL_GRACE_SECONDS
        )
    except TimeoutError:
        await process.wait()
        return b""
    return stdout_bytes or b""


def _elapsed_ms(started_ns: int) -> int:
    delta_ns = time.monotonic_ns() - started_ns
    if delta_ns < 0:
        return 0
    return delta_ns // 1_000_000


def _normalize_output_text(raw: bytes) -> str:
    text = raw.decode("utf-8", errors="replace")
    return text.replace("\r\n", "\n").replace("\r", "\n")


def _truncate_text(text: str, max_chars: int | None) -> str:
    if max_chars is None or len(text) <= max_chars:
        return text
    omitted = len(text) - max_chars
    return f"{text[:max_chars]}\n...[truncated {omitted} chars]"


__all__ = [
    "CommandExecutor",
    "CommandResult",
    "CommandSpec",
    "LocalSubprocessExecutor",
]
