"""Stable constants shared across the pipeline, config and CLI layers."""

from __future__ import annotations

from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1

# Profile names.
CI_STRICT_PROFILE: Final[str] = "ci-strict"
LOCAL_FIX_PROFILE: Final[str] = "local-fix"

# Matrix axes.
TOOLCHAIN_AXIS: Final[str] = "toolchain"
DEFAULT_TOOLCHAINS: Final[tuple[str, ...]] = ("stable", "beta", "nightly")

# Environment contract with child processes.
DEFAULT_COLOR_VARIABLE: Final[str] = "CARGO_TERM_COLOR"
DEFAULT_COLOR_VALUE: Final[str] = "always"
DENY_WARNINGS_VARIABLE: Final[str] = "RUSTFLAGS"
DENY_WARNINGS_VALUE: Final[str] = "-D warnings"
TOOLCHAIN_SELECTOR_VARIABLE: Final[str] = "RUSTUP_TOOLCHAIN"

# Default project layout and runtime limits.
DEFAULT_PROJECT_DIR: Final[str] = "crate"
DEFAULT_STAGE_TIMEOUT_SECONDS: Final[float] = 1800.0
DEFAULT_MAX_OUTPUT_CHARS: Final[int] = 200_000

# Test runner choices.
TEST_RUNNER_NEXTEST: Final[str] = "nextest"
TEST_RUNNER_CARGO_TEST: Final[str] = "cargo-test"
TEST_RUNNERS: Final[tuple[str, ...]] = (TEST_RUNNER_NEXTEST, TEST_RUNNER_CARGO_TEST)

__all__ = [
    "CI_STRICT_PROFILE",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_COLOR_VALUE",
    "DEFAULT_COLOR_VARIABLE",
    "DEFAULT_MAX_OUTPUT_CHARS",
    "DEFAULT_PROJECT_DIR",
    "DEFAULT_STAGE_TIMEOUT_SECONDS",
    "DEFAULT_TOOLCHAINS",
    "DENY_WARNINGS_VALUE",
    "DENY_WARNINGS_VARIABLE",
    "LOCAL_FIX_PROFILE",
    "TEST_RUNNERS",
    "TEST_RUNNER_CARGO_TEST",
    "TEST_RUNNER_NEXTEST",
    "TOOLCHAIN_AXIS",
    "TOOLCHAIN_SELECTOR_VARIABLE",
]
