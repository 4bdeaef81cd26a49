"""
gate-orchestrator — matrix orchestrator.

File: src/gate_orchestrator/pipeline/orchestrator.py

Purpose
- Resolve a policy profile, expand the configuration matrix, run one pipeline per
  configuration with bounded concurrency and aggregate a single verdict.

Normative behavior
- All input validation (profile, axes, argv placeholders, working directories) happens
  before any child process is spawned and raises ``ConfigurationError``.
- The aggregate outcome is Failed when any configuration did not pass. Stage semantics
  are never inspected here, only ``RunReport`` outcomes.
- ``cancel_on_failure`` lets a failed configuration cancel its siblings between stages;
  the request is ignored once any remediation stage has started.
- ``ToolNotFoundError`` is fatal: siblings stop before their next stage, in-flight
  stages drain, then the error is re-raised.
"""

from __future__ import annotations

import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog

from gate_orchestrator.constants import CI_STRICT_PROFILE
from gate_orchestrator.errors import (
    ConfigurationError,
    StageFailedError,
    StageTimeoutError,
    ToolNotFoundError,
)
from gate_orchestrator.execution.executor import CommandExecutor, LocalSubprocessExecutor
from gate_orchestrator.pipeline.matrix import Axes, Configuration, expand
from gate_orchestrator.pipeline.profiles import (
    DEFAULT_PROFILE_REGISTRY,
    PolicyProfile,
    ProfileRegistry,
)
from gate_orchestrator.pipeline.runner import PipelineRunner, RunOutcome, RunReport
from gate_orchestrator.pipeline.settings import PipelineSettings
from gate_orchestrator.pipeline.stages import FailureReason, StageResult, StageSpec
from gate_orchestrator.utils.concurrency import (
    CancellationToken,
    ShieldedCancellationToken,
    WorkerPool,
)


@dataclass(frozen=True, slots=True)
class AggregateReport:
    """Overall verdict with per-configuration detail in matrix order."""

    profile: str
    run_reports: tuple[RunReport, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "run_reports", tuple(self.run_reports))

    @property
    def outcome(self) -> RunOutcome:
        if all(report.passed for report in self.run_reports):
            return RunOutcome.PASSED
        return RunOutcome.FAILED

    @property
    def passed(self) -> bool:
        return self.outcome is RunOutcome.PASSED

    @property
    def configurations(self) -> tuple[Configuration, ...]:
        return tuple(report.configuration for report in self.run_reports)

    def report_for(self, label: str) -> RunReport:
        for report in self.run_reports:
            if report.configuration.label == label:
                return report
        raise KeyError(label)

    def failures(self) -> dict[str, StageResult]:
        """First failing stage per failed configuration, keyed by configuration label."""

        failures: dict[str, StageResult] = {}
        for report in self.run_reports:
            first = report.first_failure
            if first is not None:
                failures[report.configuration.label] = first
        return failures

    def raise_for_outcome(self) -> None:
        """Raise ``StageFailedError`` for the first failed configuration, if any."""

        for label, result in self.failures().items():
            reason = result.reason.value if result.reason is not None else "failed"
            if result.reason is FailureReason.TIMEOUT:
                raise StageTimeoutError(result.stage_name, label, reason)
            raise StageFailedError(result.stage_name, label, reason)

    def to_dict(self) -> dict[str, object]:
        return {
            "profile": self.profile,
            "outcome": self.outcome.value,
            "configurations": [report.to_dict() for report in self.run_reports],
        }


@dataclass(frozen=True, slots=True)
class _RunControl:
    cancel_token: ShieldedCancellationToken
    abort_token: CancellationToken


@dataclass(frozen=True, slots=True)
class _ConfigurationRun:
    configuration: Configuration
    report: RunReport | None
    error: ToolNotFoundError | None = None


class Orchestrator:
    """Drive matrix expansion and per-configuration pipelines."""

    def __init__(
        self,
        executor: CommandExecutor | None = None,
        *,
        settings: PipelineSettings | None = None,
        project_root: Path | str = ".",
        environ: Mapping[str, str] | None = None,
        registry: ProfileRegistry | None = None,
        logger: Any | None = None,
    ) -> None:
        self._settings = settings if settings is not None else PipelineSettings()
        self._executor = (
            executor
            if executor is not None
            else LocalSubprocessExecutor(
                default_timeout_seconds=self._settings.stage_timeout_seconds
            )
        )
        self._project_root = Path(project_root)
        self._environ = dict(os.environ if environ is None else environ)
        self._registry = registry if registry is not None else DEFAULT_PROFILE_REGISTRY
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def settings(self) -> PipelineSettings:
        return self._settings

    def resolve_profile(self, profile_name: str) -> PolicyProfile:
        return self._registry.get(profile_name, self._settings)

    def plan(
        self,
        axes: Axes | None,
        profile_name: str,
    ) -> tuple[PolicyProfile, tuple[Configuration, ...]]:
        """Validate inputs and return the profile with its expanded configurations."""

        profile = self.resolve_profile(profile_name)
        effective_axes = profile.default_axes if axes is None else axes
        configurations = expand(effective_axes)
        for configuration in configurations:
            for stage in profile.stages:
                stage.render_argv(configuration)
        self._validate_working_dirs(profile.stages)
        return profile, configurations

    async def execute(
        self,
        axes: Axes | None = None,
        profile_name: str = CI_STRICT_PROFILE,
    ) -> AggregateReport:
        profile, configurations = self.plan(axes, profile_name)
        runner = PipelineRunner(
            self._executor,
            project_root=self._project_root,
            base_env=self._settings.color_environment(self._environ),
            axis_env=profile.axis_env,
            fail_fast=self._settings.fail_fast,
            default_timeout_seconds=self._settings.stage_timeout_seconds,
            logger=self._logger,
        )
        control = _RunControl(
            cancel_token=ShieldedCancellationToken(),
            abort_token=CancellationToken(),
        )

        limit = self._settings.max_parallel or len(configurations)
        pool: WorkerPool[_ConfigurationRun] = WorkerPool(
            max_concurrency=min(limit, len(configurations))
        )
        self._logger.info(
            "matrix_started",
            profile=profile.name,
            configurations=[configuration.label for configuration in configurations],
            max_parallel=pool.max_concurrency,
        )

        finished: dict[Configuration, RunReport] = {}
        fatal: ToolNotFoundError | None = None
        coroutines = [
            self._run_configuration(runner, configuration, profile.stages, control)
            for configuration in configurations
        ]
        async for run in pool.run(coroutines):
            if run.error is not None:
                fatal = fatal or run.error
            elif run.report is not None:
                finished[run.configuration] = run.report

        if fatal is not None:
            raise fatal

        report = AggregateReport(
            profile=profile.name,
            run_reports=tuple(finished[configuration] for configuration in configurations),
        )
        self._logger.info("matrix_finished", profile=profile.name, outcome=report.outcome.value)
        return report

    async def _run_configuration(
        self,
        runner: PipelineRunner,
        configuration: Configuration,
        stages: Sequence[StageSpec],
        control: _RunControl,
    ) -> _ConfigurationRun:
        try:
            report = await runner.run(
                configuration,
                stages,
                cancel_token=control.cancel_token,
                abort_token=control.abort_token,
            )
        except ToolNotFoundError as exc:
            control.abort_token.cancel()
            self._logger.error(
                "tool_not_found",
                configuration=configuration.label,
                tool=exc.tool,
                detail=exc.detail,
            )
            return _ConfigurationRun(configuration=configuration, report=None, error=exc)

        if report.outcome is RunOutcome.FAILED and self._settings.cancel_on_failure:
            accepted = control.cancel_token.cancel()
            self._logger.info(
                "sibling_cancellation_requested",
                configuration=configuration.label,
                accepted=accepted,
            )
        return _ConfigurationRun(configuration=configuration, report=report)

    def _validate_working_dirs(self, stages: Sequence[StageSpec]) -> None:
        missing = sorted(
            {
                stage.working_dir
                for stage in stages
                if not (self._project_root / stage.working_dir).is_dir()
            }
        )
        if missing:
            raise ConfigurationError(
                f"working directories do not exist under {self._project_root}: {missing}"
            )


__all__ = ["AggregateReport", "Orchestrator"]
