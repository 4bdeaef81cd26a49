"""
gate-orchestrator — configuration schema and validation.

File: src/gate_orchestrator/config/schema.py

Purpose
- Define authoritative configuration defaults and strict validation rules.

What should be included in this file
- Schema versioning and migration guidance.
- One declarative rule per setting (type, bounds, allowed values).
- Deterministic deep-merge helpers.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- Report every problem at once, ordered by section, then unknown, missing and invalid
  fields.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, TypedDict

from gate_orchestrator.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_COLOR_VALUE,
    DEFAULT_COLOR_VARIABLE,
    DEFAULT_PROJECT_DIR,
    DEFAULT_STAGE_TIMEOUT_SECONDS,
    TEST_RUNNER_NEXTEST,
    TEST_RUNNERS,
)
from gate_orchestrator.errors import ConfigurationError

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION
LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
LOG_FORMATS: Final[tuple[str, ...]] = ("console", "json")

_ENV_NAME_PATTERN = re.compile(r"^[A-Z_][A-Z0-9_]*$")


class MetaConfig(TypedDict):
    schema_version: int


class PipelineConfig(TypedDict):
    project_dir: str
    max_parallel: int
    stage_timeout_seconds: float
    fail_fast: bool
    cancel_on_failure: bool
    test_runner: str
    provision_toolchain: bool


class EnvironmentConfig(TypedDict):
    color_variable: str
    color_default: str


class LoggingSettings(TypedDict):
    level: str
    format: str


class GateConfig(TypedDict):
    meta: MetaConfig
    pipeline: PipelineConfig
    environment: EnvironmentConfig
    logging: LoggingSettings


DEFAULT_CONFIG: Final[GateConfig] = {
    "meta": {"schema_version": CONFIG_SCHEMA_VERSION},
    "pipeline": {
        "project_dir": DEFAULT_PROJECT_DIR,
        "max_parallel": 0,
        "stage_timeout_seconds": DEFAULT_STAGE_TIMEOUT_SECONDS,
        "fail_fast": True,
        "cancel_on_failure": False,
        "test_runner": TEST_RUNNER_NEXTEST,
        "provision_toolchain": False,
    },
    "environment": {
        "color_variable": DEFAULT_COLOR_VARIABLE,
        "color_default": DEFAULT_COLOR_VALUE,
    },
    "logging": {
        "level": "WARNING",
        "format": "console",
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Validation result with normalized config when no issues were found."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ConfigurationError):
    """Raised when strict config validation fails; ``issues`` holds every problem."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        lines = [f"- {issue.path}: {issue.message}" for issue in self.issues]
        super().__init__("invalid config:\n" + ("\n".join(lines) or "- <root>: invalid"))


_Kind = Literal["text", "path", "env_name", "bool", "int", "float", "choice"]


@dataclass(frozen=True, slots=True)
class _Rule:
    kind: _Kind
    minimum: float | None = None
    choices: tuple[str, ...] = ()
    upper: bool = False


_RULES: Final[dict[str, dict[str, _Rule]]] = {
    "meta": {
        "schema_version": _Rule("int", minimum=1),
    },
    "pipeline": {
        "project_dir": _Rule("path"),
        "max_parallel": _Rule("int", minimum=0),
        "stage_timeout_seconds": _Rule("float", minimum=0.001),
        "fail_fast": _Rule("bool"),
        "cancel_on_failure": _Rule("bool"),
        "test_runner": _Rule("choice", choices=TEST_RUNNERS),
        "provision_toolchain": _Rule("bool"),
    },
    "environment": {
        "color_variable": _Rule("env_name"),
        "color_default": _Rule("text"),
    },
    "logging": {
        "level": _Rule("choice", choices=LOG_LEVELS, upper=True),
        "format": _Rule("choice", choices=LOG_FORMATS),
    },
}


class _Invalid(Exception):
    """Internal signal carrying the message for one rejected value."""


def default_config() -> GateConfig:
    """Return a deep copy of deterministic built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    """Return deterministic migration guidance for schema version mismatch."""

    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade gate.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the gate-orchestrator runtime"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto a copy of ``base``; tables merge, scalars replace."""

    merged: dict[str, Any] = copy.deepcopy(dict(base))
    for key, value in overlay.items():
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = merge_config(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Validate config and return structured issues with deterministic paths."""

    issues: list[ConfigValidationIssue] = []
    if not isinstance(config, Mapping):
        issues.append(
            ConfigValidationIssue("<root>", f"expected object, got {type(config).__name__}")
        )
        return ConfigValidationResult(config=None, issues=tuple(issues))

    normalized: dict[str, Any] = {}
    for key in sorted(set(config) - set(_RULES), key=str):
        issues.append(ConfigValidationIssue(str(key), "unknown section"))
    for section in sorted(_RULES):
        raw = config.get(section)
        if raw is None:
            issues.append(ConfigValidationIssue(section, "missing required section"))
        elif not isinstance(raw, Mapping):
            issues.append(
                ConfigValidationIssue(section, f"expected table, got {type(raw).__name__}")
            )
        else:
            normalized[section] = _check_section(section, raw, issues)

    version = normalized.get("meta", {}).get("schema_version")
    if version is not None and version != ConfigSchemaVersion:
        issues.append(ConfigValidationIssue("meta.schema_version", migration_guidance(version)))

    if issues:
        return ConfigValidationResult(config=None, issues=tuple(issues))
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def _check_section(
    section: str,
    payload: Mapping[object, object],
    issues: list[ConfigValidationIssue],
) -> dict[str, Any]:
    rules = _RULES[section]
    for key in sorted(set(payload) - set(rules), key=str):
        issues.append(ConfigValidationIssue(f"{section}.{key}", "unknown field"))
    for key in sorted(set(rules) - set(payload)):
        issues.append(ConfigValidationIssue(f"{section}.{key}", "missing required field"))

    checked: dict[str, Any] = {}
    for key in sorted(set(rules) & set(payload)):
        try:
            checked[key] = _check_value(rules[key], payload[key])
        except _Invalid as exc:
            issues.append(ConfigValidationIssue(f"{section}.{key}", str(exc)))
    return checked


def _check_value(rule: _Rule, value: object) -> object:
    kind = rule.kind
    if kind == "bool":
        if not isinstance(value, bool):
            raise _Invalid(f"expected boolean, got {type(value).__name__}")
        return value
    if kind in ("int", "float"):
        return _check_number(rule, value)

    if not isinstance(value, str):
        raise _Invalid(f"expected string, got {type(value).__name__}")
    text = value.strip()
    if not text:
        raise _Invalid("must not be empty")
    if kind == "path" and "\x00" in text:
        raise _Invalid("must not contain NUL bytes")
    if kind == "env_name" and not _ENV_NAME_PATTERN.fullmatch(text):
        raise _Invalid("must be an env var name (example: CARGO_TERM_COLOR)")
    if kind == "choice":
        candidate = text.upper() if rule.upper else text
        if candidate not in rule.choices:
            expected = ", ".join(sorted(rule.choices))
            raise _Invalid(f"invalid value {text!r}; expected one of: {expected}")
        return candidate
    return text


def _check_number(rule: _Rule, value: object) -> int | float:
    if rule.kind == "int":
        if isinstance(value, bool) or not isinstance(value, int):
            raise _Invalid(f"expected integer, got {type(value).__name__}")
        number: int | float = value
    else:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise _Invalid(f"expected number, got {type(value).__name__}")
        number = float(value)
        if not math.isfinite(number):
            raise _Invalid("must be finite")
    if rule.minimum is not None and number < rule.minimum:
        minimum = int(rule.minimum) if rule.kind == "int" else rule.minimum
        raise _Invalid(f"must be >= {minimum}")
    return number


__all__ = [
    "DEFAULT_CONFIG",
    "LOG_FORMATS",
    "LOG_LEVELS",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "GateConfig",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "validate_config",
]
