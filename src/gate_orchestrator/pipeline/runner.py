"""
gate-orchestrator — pipeline runner.

File: src/gate_orchestrator/pipeline/runner.py

Purpose
- Execute the stages of one configuration strictly in declared order and build its
  ``RunReport``.

Normative behavior
- Each stage is materialized (argv placeholders, environment, working directory),
  handed to the injected ``CommandExecutor`` and classified by its success predicate.
- Fail-fast (default): after the first Failed stage every remaining stage is Skipped
  with reason ``fail_fast``.
- Cooperative cancellation is checked between stages only; a running child process is
  never interrupted by sibling cancellation. Starting a remediation stage shields the
  shared cancellation token so later cancel requests are ignored.
- Stage failures are returned as data. ``ToolNotFoundError`` and ``ConfigurationError``
  propagate.
"""

from __future__ import annotations

import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Any

import structlog

from gate_orchestrator.execution.executor import CommandExecutor, CommandSpec
from gate_orchestrator.pipeline.matrix import Configuration
from gate_orchestrator.pipeline.stages import (
    FailureReason,
    StageOutcome,
    StageResult,
    StageSpec,
    classify,
)
from gate_orchestrator.utils.concurrency import CancellationToken, ShieldedCancellationToken


class RunOutcome(StrEnum):
    """Per-configuration verdict."""

    PASSED = "passed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class RunReport:
    """Ordered stage results for one configuration plus its verdict."""

    configuration: Configuration
    stage_results: tuple[StageResult, ...]
    outcome: RunOutcome

    def __post_init__(self) -> None:
        object.__setattr__(self, "stage_results", tuple(self.stage_results))
        object.__setattr__(self, "outcome", RunOutcome(self.outcome))

    @property
    def passed(self) -> bool:
        return self.outcome is RunOutcome.PASSED

    @property
    def executed(self) -> tuple[StageResult, ...]:
        """Stage results that actually ran, in declared order."""

        return tuple(result for result in self.stage_results if not result.skipped)

    @property
    def first_failure(self) -> StageResult | None:
        for result in self.stage_results:
            if result.failed:
                return result
        return None

    @property
    def duration_ms(self) -> int:
        return sum(result.duration_ms for result in self.stage_results)

    def to_dict(self) -> dict[str, object]:
        return {
            "configuration": self.configuration.to_dict(),
            "label": self.configuration.label,
            "outcome": self.outcome.value,
            "duration_ms": self.duration_ms,
            "stages": [result.to_dict() for result in self.stage_results],
        }


class PipelineRunner:
    """Sequential stage executor for a single configuration."""

    def __init__(
        self,
        executor: CommandExecutor,
        *,
        project_root: Path | str = ".",
        base_env: Mapping[str, str] | None = None,
        axis_env: Mapping[str, str] | None = None,
        fail_fast: bool = True,
        default_timeout_seconds: float | None = None,
        logger: Any | None = None,
    ) -> None:
        if default_timeout_seconds is not None and default_timeout_seconds <= 0:
            raise ValueError("default_timeout_seconds must be > 0 when provided")
        self._executor = executor
        self._project_root = Path(project_root)
        self._base_env = dict(base_env or {})
        self._axis_env = dict(axis_env or {})
        self._fail_fast = fail_fast
        self._default_timeout_seconds = default_timeout_seconds
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def fail_fast(self) -> bool:
        return self._fail_fast

    async def run(
        self,
        configuration: Configuration,
        stage_specs: Sequence[StageSpec],
        *,
        cancel_token: CancellationToken | None = None,
        abort_token: CancellationToken | None = None,
    ) -> RunReport:
        log = self._logger.bind(configuration=configuration.label)
        results: list[StageResult] = []
        halt_reason: FailureReason | None = None

        for spec in stage_specs:
            if halt_reason is None and _is_set(cancel_token, abort_token):
                halt_reason = FailureReason.CANCELLED
                log.info("configuration_cancelled", next_stage=spec.name)
            if halt_reason is not None:
                results.append(
                    StageResult(
                        stage_name=spec.name,
                        configuration=configuration,
                        outcome=StageOutcome.SKIPPED,
                        reason=halt_reason,
                    )
                )
                continue

            if spec.remediation and isinstance(cancel_token, ShieldedCancellationToken):
                cancel_token.shield()

            result = await self._run_stage(configuration, spec, log)
            results.append(result)
            if result.failed and self._fail_fast:
                halt_reason = FailureReason.FAIL_FAST

        outcome = _outcome_for(results)
        log.info("configuration_finished", outcome=outcome.value)
        return RunReport(configuration=configuration, stage_results=tuple(results), outcome=outcome)

    def materialize(self, configuration: Configuration, spec: StageSpec) -> CommandSpec:
        """Build the concrete command for ``spec`` under ``configuration``."""

        env = dict(self._base_env)
        env.update(spec.env)
        for axis, value in configuration.items():
            variable = self._axis_env.get(axis)
            if variable is not None:
                env[variable] = value

        timeout = (
            spec.timeout_seconds
            if spec.timeout_seconds is not None
            else self._default_timeout_seconds
        )
        return CommandSpec(
            argv=spec.render_argv(configuration),
            cwd=str(self._project_root / spec.working_dir),
            env=env,
            timeout_seconds=timeout,
        )

    async def _run_stage(
        self,
        configuration: Configuration,
        spec: StageSpec,
        log: Any,
    ) -> StageResult:
        command = self.materialize(configuration, spec)
        log.info("stage_started", stage=spec.name, command=command.command_line())

        started = time.perf_counter()
        command_result = await self._executor.run(command)
        outcome, reason = classify(spec, command_result)

        result = StageResult(
            stage_name=spec.name,
            configuration=configuration,
            outcome=outcome,
            exit_code=command_result.exit_code,
            output=command_result.output,
            duration_ms=command_result.duration_ms or _duration_ms(started),
            reason=reason,
            command_line=command.command_line(),
        )
        log.info(
            "stage_finished",
            stage=spec.name,
            outcome=outcome.value,
            reason=reason.value if reason is not None else None,
            exit_code=command_result.exit_code,
            duration_ms=result.duration_ms,
        )
        return result


def _is_set(*tokens: CancellationToken | None) -> bool:
    return any(token is not None and token.is_cancelled for token in tokens)


def _outcome_for(results: Sequence[StageResult]) -> RunOutcome:
    if any(result.failed for result in results):
        return RunOutcome.FAILED
    if any(result.reason is FailureReason.CANCELLED for result in results):
        return RunOutcome.CANCELLED
    return RunOutcome.PASSED


def _duration_ms(start: float) -> int:
    return max(0, int((time.perf_counter() - start) * 1000))


__all__ = ["PipelineRunner", "RunOutcome", "RunReport"]
