"""Observability helpers: structlog configuration."""

from gate_orchestrator.observability.logging import (
    LOG_FORMAT_CONSOLE,
    LOG_FORMAT_JSON,
    configure_from_config,
    configure_logging,
    resolve_level,
)

__all__ = [
    "LOG_FORMAT_CONSOLE",
    "LOG_FORMAT_JSON",
    "configure_from_config",
    "configure_logging",
    "resolve_level",
]
