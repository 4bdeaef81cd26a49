"""
gate-orchestrator — error taxonomy.

File: src/gate_orchestrator/errors.py

Purpose
- Define the failure types shared by the executor, runner, orchestrator and CLI.

Propagation rules
- ``ToolNotFoundError`` is fatal: it aborts the whole run.
- ``ConfigurationError`` is raised before any child process is spawned.
- ``StageFailedError``/``StageTimeoutError`` never cross the pipeline runner boundary on
  their own; stage failures are captured as ``StageResult`` data and only raised on
  request via ``AggregateReport.raise_for_outcome``.
"""

from __future__ import annotations


class GateError(Exception):
    """Base class for all gate-orchestrator failures."""


class ConfigurationError(GateError, ValueError):
    """Invalid profile, axis or configuration input."""


class ToolNotFoundError(GateError):
    """An external tool could not be started (missing binary, not executable)."""

    def __init__(self, tool: str, detail: str | None = None) -> None:
        self.tool = tool
        self.detail = detail
        message = f"tool not found: {tool!r}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class StageFailedError(GateError):
    """A stage finished with a failing outcome."""

    def __init__(self, stage_name: str, configuration_label: str, reason: str) -> None:
        self.stage_name = stage_name
        self.configuration_label = configuration_label
        self.reason = reason
        super().__init__(f"stage {stage_name!r} failed for {configuration_label}: {reason}")


class StageTimeoutError(StageFailedError):
    """A stage exceeded its timeout and was killed."""


__all__ = [
    "ConfigurationError",
    "GateError",
    "StageFailedError",
    "StageTimeoutError",
    "ToolNotFoundError",
]
