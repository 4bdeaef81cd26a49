"""Typed view over the ``[pipeline]`` and ``[environment]`` config sections."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from gate_orchestrator.constants import (
    DEFAULT_COLOR_VALUE,
    DEFAULT_COLOR_VARIABLE,
    DEFAULT_PROJECT_DIR,
    DEFAULT_STAGE_TIMEOUT_SECONDS,
    TEST_RUNNER_NEXTEST,
    TEST_RUNNERS,
)
from gate_orchestrator.errors import ConfigurationError


@dataclass(frozen=True, slots=True)
class PipelineSettings:
    """Knobs that shape profiles, the runner and the orchestrator."""

    project_dir: str = DEFAULT_PROJECT_DIR
    max_parallel: int = 0
    stage_timeout_seconds: float = DEFAULT_STAGE_TIMEOUT_SECONDS
    fail_fast: bool = True
    cancel_on_failure: bool = False
    test_runner: str = TEST_RUNNER_NEXTEST
    provision_toolchain: bool = False
    color_variable: str = DEFAULT_COLOR_VARIABLE
    color_default: str = DEFAULT_COLOR_VALUE

    def __post_init__(self) -> None:
        if self.max_parallel < 0:
            raise ConfigurationError("pipeline.max_parallel must be >= 0")
        if self.stage_timeout_seconds <= 0:
            raise ConfigurationError("pipeline.stage_timeout_seconds must be > 0")
        if self.test_runner not in TEST_RUNNERS:
            expected = ", ".join(TEST_RUNNERS)
            raise ConfigurationError(
                f"pipeline.test_runner {self.test_runner!r} is invalid; expected one of: {expected}"
            )

    @classmethod
    def from_config(cls, config: Mapping[str, object]) -> PipelineSettings:
        pipeline = _section(config, "pipeline")
        environment = _section(config, "environment")
        defaults = cls()
        return cls(
            project_dir=str(pipeline.get("project_dir", defaults.project_dir)),
            max_parallel=int(pipeline.get("max_parallel", defaults.max_parallel)),
            stage_timeout_seconds=float(
                pipeline.get("stage_timeout_seconds", defaults.stage_timeout_seconds)
            ),
            fail_fast=bool(pipeline.get("fail_fast", defaults.fail_fast)),
            cancel_on_failure=bool(pipeline.get("cancel_on_failure", defaults.cancel_on_failure)),
            test_runner=str(pipeline.get("test_runner", defaults.test_runner)),
            provision_toolchain=bool(
                pipeline.get("provision_toolchain", defaults.provision_toolchain)
            ),
            color_variable=str(environment.get("color_variable", defaults.color_variable)),
            color_default=str(environment.get("color_default", defaults.color_default)),
        )

    def color_environment(self, environ: Mapping[str, str]) -> dict[str, str]:
        """Color toggle forwarded to children: the caller's value wins, else the default."""

        return {self.color_variable: environ.get(self.color_variable, self.color_default)}


def _section(config: Mapping[str, object], key: str) -> Mapping[str, object]:
    raw = config.get(key, {})
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"config section [{key}] must be a table")
    return raw


__all__ = ["PipelineSettings"]
