"""
gate-orchestrator — stage model.

File: src/gate_orchestrator/pipeline/stages.py

Purpose
- Define ``StageSpec`` (what to invoke and how to judge it) and ``StageResult`` (what
  happened), plus the success-predicate classification shared by the runner.

Normative behavior
- ``exit_zero``: Passed iff the tool exited with status 0.
- ``exit_zero_no_diff``: additionally Failed when the output contains a diff, as
  produced by check-only formatters.
- Remediation stages never fail from their predicate; a tool that cannot start
  (``ToolNotFoundError``) is otherwise their only failure. Timeouts are the exception:
  every stage is bounded by its timeout, remediation included, so a timed-out
  remediation stage is Failed with reason ``timeout`` rather than Passed.
"""

from __future__ import annotations

import re
import string
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Final

from gate_orchestrator.errors import ConfigurationError
from gate_orchestrator.execution.executor import CommandResult
from gate_orchestrator.pipeline.matrix import Configuration

_DIFF_LINE_RE: Final[re.Pattern[str]] = re.compile(r"^(?:Diff in |@@ |\+\+\+ |--- )")
_FORMATTER = string.Formatter()


class StageOutcome(StrEnum):
    """Per-stage verdict."""

    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


class FailureReason(StrEnum):
    """Why a stage did not pass."""

    EXIT_CODE = "exit_code"
    DIFF_PRODUCED = "diff_produced"
    TIMEOUT = "timeout"
    FAIL_FAST = "fail_fast"
    CANCELLED = "cancelled"


class SuccessPredicate(StrEnum):
    """Declared success rule for a stage."""

    EXIT_ZERO = "exit_zero"
    EXIT_ZERO_NO_DIFF = "exit_zero_no_diff"


@dataclass(frozen=True, slots=True)
class StageSpec:
    """Immutable stage definition produced by a policy profile."""

    name: str
    argv: tuple[str, ...]
    working_dir: str = "."
    env: Mapping[str, str] = field(default_factory=dict)
    predicate: SuccessPredicate = SuccessPredicate.EXIT_ZERO
    remediation: bool = False
    timeout_seconds: float | None = None
    description: str = ""

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValueError("StageSpec.name must be non-empty")
        argv = tuple(self.argv)
        if not argv or not all(isinstance(part, str) and part for part in argv):
            raise ValueError(f"StageSpec {self.name!r} argv must contain non-empty strings")
        object.__setattr__(self, "argv", argv)
        object.__setattr__(self, "env", {key: self.env[key] for key in sorted(self.env)})
        object.__setattr__(self, "predicate", SuccessPredicate(self.predicate))
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValueError(f"StageSpec {self.name!r} timeout_seconds must be > 0")

    @property
    def placeholders(self) -> frozenset[str]:
        """Axis names referenced by ``{axis}`` fields in the argv template."""

        names: set[str] = set()
        for part in self.argv:
            for _, field_name, _, _ in _FORMATTER.parse(part):
                if field_name:
                    names.add(field_name)
        return frozenset(names)

    def render_argv(self, configuration: Configuration) -> tuple[str, ...]:
        missing = sorted(self.placeholders - set(configuration))
        if missing:
            raise ConfigurationError(
                f"stage {self.name!r} requires axis values {missing} "
                f"not present in configuration {configuration.label}"
            )
        return tuple(part.format_map(configuration.to_dict()) for part in self.argv)


@dataclass(frozen=True, slots=True)
class StageResult:
    """Outcome of one stage execution (or skip) for one configuration."""

    stage_name: str
    configuration: Configuration
    outcome: StageOutcome
    exit_code: int | None = None
    output: str = ""
    duration_ms: int = 0
    reason: FailureReason | None = None
    command_line: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "outcome", StageOutcome(self.outcome))
        if self.reason is not None:
            object.__setattr__(self, "reason", FailureReason(self.reason))
        if self.duration_ms < 0:
            raise ValueError("StageResult.duration_ms must be >= 0")
        if self.outcome is StageOutcome.PASSED and self.reason is not None:
            raise ValueError("a passed StageResult cannot carry a failure reason")

    @property
    def passed(self) -> bool:
        return self.outcome is StageOutcome.PASSED

    @property
    def failed(self) -> bool:
        return self.outcome is StageOutcome.FAILED

    @property
    def skipped(self) -> bool:
        return self.outcome is StageOutcome.SKIPPED

    def to_dict(self) -> dict[str, object]:
        return {
            "stage": self.stage_name,
            "configuration": self.configuration.to_dict(),
            "outcome": self.outcome.value,
            "exit_code": self.exit_code,
            "output": self.output,
            "duration_ms": self.duration_ms,
            "reason": self.reason.value if self.reason is not None else None,
            "command": self.command_line,
        }


def classify(spec: StageSpec, result: CommandResult) -> tuple[StageOutcome, FailureReason | None]:
    """Apply the stage's success predicate to a finished command."""

    if result.timed_out:
        return StageOutcome.FAILED, FailureReason.TIMEOUT
    if spec.remediation:
        return StageOutcome.PASSED, None
    if result.exit_code != 0:
        return StageOutcome.FAILED, FailureReason.EXIT_CODE
    if spec.predicate is SuccessPredicate.EXIT_ZERO_NO_DIFF and output_contains_diff(result.output):
        return StageOutcome.FAILED, FailureReason.DIFF_PRODUCED
    return StageOutcome.PASSED, None


def output_contains_diff(output: str) -> bool:
    return any(_DIFF_LINE_RE.match(line) for line in output.splitlines())


__all__ = [
    "FailureReason",
    "StageOutcome",
    "StageResult",
    "StageSpec",
    "SuccessPredicate",
    "classify",
    "output_contains_diff",
]
