"""Quality-gate pipeline: stages, matrix, profiles, runner and orchestrator."""

from gate_orchestrator.pipeline.matrix import Configuration, expand
from gate_orchestrator.pipeline.orchestrator import AggregateReport, Orchestrator
from gate_orchestrator.pipeline.profiles import (
    PolicyProfile,
    ProfileRegistry,
    default_axes,
    get_profile,
    profile_names,
    stages_for,
)
from gate_orchestrator.pipeline.runner import PipelineRunner, RunOutcome, RunReport
from gate_orchestrator.pipeline.settings import PipelineSettings
from gate_orchestrator.pipeline.stages import (
    FailureReason,
    StageOutcome,
    StageResult,
    StageSpec,
    SuccessPredicate,
)

__all__ = [
    "AggregateReport",
    "Configuration",
    "FailureReason",
    "Orchestrator",
    "PipelineRunner",
    "PipelineSettings",
    "PolicyProfile",
    "ProfileRegistry",
    "RunOutcome",
    "RunReport",
    "StageOutcome",
    "StageResult",
    "StageSpec",
    "SuccessPredicate",
    "default_axes",
    "expand",
    "get_profile",
    "profile_names",
    "stages_for",
]
