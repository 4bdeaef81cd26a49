"""Utility exports for concurrency helpers."""

from gate_orchestrator.utils.concurrency import (
    CancellationToken,
    ShieldedCancellationToken,
    WorkerPool,
)

__all__ = [
    "CancellationToken",
    "ShieldedCancellationToken",
    "WorkerPool",
]
