"""
gate-orchestrator: quality-gate orchestration for Rust crates.

Runs an ordered set of stages (format, lint, build, docs, tests) once per
configuration of a toolchain matrix, with a strict read-only CI profile and a
local profile that auto-formats. Importing this package has no side effects;
config loading and logging setup happen in the CLI.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
