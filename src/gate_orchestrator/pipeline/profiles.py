"""
gate-orchestrator — policy profiles.

File: src/gate_orchestrator/pipeline/profiles.py

Purpose
- Single source of truth for stage ordering and per-stage strictness.

Profiles
- ``ci-strict``: read-only format check, lint with warnings denied, build, docs,
  doc-tests, tests. Children see the deny-warnings toggle. Matrix defaults to
  stable/beta/nightly.
- ``local-fix``: formatter rewrites files in place (remediation), lint with warnings
  denied, debug and release builds, tests. No docs stages and no deny-warnings toggle.
  Runs once against the ambient toolchain unless toolchains are requested.

Both profiles share the test stage, whose runner (``cargo nextest`` or
``cargo test --verbose``) is selected by ``pipeline.test_runner``. With
``pipeline.provision_toolchain`` both prepend a rustup install of the configuration's
toolchain and, for the nextest runner, ``cargo install cargo-nextest --locked``.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Final

from gate_orchestrator.constants import (
    CI_STRICT_PROFILE,
    DEFAULT_TOOLCHAINS,
    DENY_WARNINGS_VALUE,
    DENY_WARNINGS_VARIABLE,
    LOCAL_FIX_PROFILE,
    TEST_RUNNER_CARGO_TEST,
    TEST_RUNNER_NEXTEST,
    TOOLCHAIN_AXIS,
    TOOLCHAIN_SELECTOR_VARIABLE,
)
from gate_orchestrator.errors import ConfigurationError
from gate_orchestrator.pipeline.settings import PipelineSettings
from gate_orchestrator.pipeline.stages import StageSpec, SuccessPredicate

PROVISION_STAGE: Final[str] = "provision"
INSTALL_NEXTEST_STAGE: Final[str] = "install-nextest"
FORMAT_STAGE: Final[str] = "format"
LINT_STAGE: Final[str] = "lint"
BUILD_STAGE: Final[str] = "build"
BUILD_RELEASE_STAGE: Final[str] = "build-release"
DOCS_STAGE: Final[str] = "docs"
DOC_TESTS_STAGE: Final[str] = "doc-tests"
TESTS_STAGE: Final[str] = "tests"

CLIPPY_ARGV: Final[tuple[str, ...]] = (
    "cargo",
    "clippy",
    "--all-targets",
    "--all-features",
    "--",
    "-D",
    "warnings",
    "-D",
    "clippy::pedantic",
    "-D",
    "clippy::cargo",
)


@dataclass(frozen=True, slots=True)
class PolicyProfile:
    """Named bundle of ordered stage definitions and strictness rules."""

    name: str
    description: str
    stages: tuple[StageSpec, ...]
    default_axes: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    axis_env: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.stages:
            raise ValueError(f"profile {self.name!r} must declare at least one stage")
        names = [stage.name for stage in self.stages]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"profile {self.name!r} declares duplicate stages: {duplicates}")
        object.__setattr__(self, "stages", tuple(self.stages))

    @property
    def stage_names(self) -> tuple[str, ...]:
        return tuple(stage.name for stage in self.stages)

    @property
    def has_remediation(self) -> bool:
        return any(stage.remediation for stage in self.stages)

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "description": self.description,
            "default_axes": {axis: list(values) for axis, values in self.default_axes.items()},
            "stages": [
                {
                    "name": stage.name,
                    "command": " ".join(stage.argv),
                    "remediation": stage.remediation,
                    "predicate": stage.predicate.value,
                }
                for stage in self.stages
            ],
        }


ProfileFactory = Callable[[PipelineSettings], PolicyProfile]


class ProfileRegistry:
    """Deterministic profile factory registry."""

    def __init__(self) -> None:
        self._factories: dict[str, ProfileFactory] = {}

    def register(self, name: str, factory: ProfileFactory) -> None:
        if not name or not name.strip():
            raise ValueError("profile name must be non-empty")
        if name in self._factories:
            raise ValueError(f"profile already registered: {name!r}")
        self._factories[name] = factory

    def names(self) -> tuple[str, ...]:
        return tuple(sorted(self._factories))

    def get(self, name: str, settings: PipelineSettings | None = None) -> PolicyProfile:
        factory = self._factories.get(name)
        if factory is None:
            known = ", ".join(self.names())
            raise ConfigurationError(f"unknown profile {name!r}; available: [{known}]")
        return factory(settings if settings is not None else PipelineSettings())


def _test_stage(settings: PipelineSettings, env: Mapping[str, str]) -> StageSpec:
    if settings.test_runner == TEST_RUNNER_CARGO_TEST:
        argv: tuple[str, ...] = ("cargo", "test", "--verbose")
    else:
        argv = ("cargo", "nextest", "run")
    return StageSpec(
        name=TESTS_STAGE,
        argv=argv,
        working_dir=settings.project_dir,
        env=env,
        description="Run tests",
    )


def _provision_stages(settings: PipelineSettings) -> list[StageSpec]:
    stages = [_toolchain_install_stage()]
    if settings.test_runner == TEST_RUNNER_NEXTEST:
        stages.append(
            StageSpec(
                name=INSTALL_NEXTEST_STAGE,
                argv=("cargo", "install", "cargo-nextest", "--locked"),
                working_dir=".",
                description="Install cargo-nextest",
            )
        )
    return stages


def _toolchain_install_stage() -> StageSpec:
    return StageSpec(
        name=PROVISION_STAGE,
        argv=(
            "rustup",
            "toolchain",
            "install",
            "{toolchain}",
            "--component",
            "rustfmt",
            "--component",
            "clippy",
        ),
        working_dir=".",
        description="Install toolchain with rustfmt and clippy",
    )


def ci_strict_profile(settings: PipelineSettings) -> PolicyProfile:
    env = {DENY_WARNINGS_VARIABLE: DENY_WARNINGS_VALUE}
    workdir = settings.project_dir
    stages: list[StageSpec] = []
    if settings.provision_toolchain:
        stages.extend(_provision_stages(settings))
    stages.extend(
        (
            StageSpec(
                name=FORMAT_STAGE,
                argv=("cargo", "fmt", "--", "--check"),
                working_dir=workdir,
                env=env,
                predicate=SuccessPredicate.EXIT_ZERO_NO_DIFF,
                description="Check code formatting",
            ),
            StageSpec(
                name=LINT_STAGE,
                argv=CLIPPY_ARGV,
                working_dir=workdir,
                env=env,
                description="Clippy lint checks",
            ),
            StageSpec(
                name=BUILD_STAGE,
                argv=("cargo", "build", "--verbose"),
                working_dir=workdir,
                env=env,
                description="Build",
            ),
            StageSpec(
                name=DOCS_STAGE,
                argv=("cargo", "doc", "-r", "--no-deps"),
                working_dir=workdir,
                env=env,
                description="Build docs",
            ),
            StageSpec(
                name=DOC_TESTS_STAGE,
                argv=("cargo", "test", "--doc"),
                working_dir=workdir,
                env=env,
                description="Run doc tests",
            ),
            _test_stage(settings, env),
        )
    )
    return PolicyProfile(
        name=CI_STRICT_PROFILE,
        description="Read-only checks enforced in CI; any warning fails the run.",
        stages=tuple(stages),
        default_axes={TOOLCHAIN_AXIS: DEFAULT_TOOLCHAINS},
        axis_env={TOOLCHAIN_AXIS: TOOLCHAIN_SELECTOR_VARIABLE},
    )


def local_fix_profile(settings: PipelineSettings) -> PolicyProfile:
    workdir = settings.project_dir
    stages: list[StageSpec] = []
    if settings.provision_toolchain:
        stages.extend(_provision_stages(settings))
    stages.extend(
        (
            StageSpec(
                name=FORMAT_STAGE,
                argv=("cargo", "fmt"),
                working_dir=workdir,
                remediation=True,
                description="Check code formatting and fix it",
            ),
            StageSpec(
                name=LINT_STAGE,
                argv=CLIPPY_ARGV,
                working_dir=workdir,
                description="Clippy lint checks",
            ),
            StageSpec(
                name=BUILD_STAGE,
                argv=("cargo", "build", "--verbose"),
                working_dir=workdir,
                description="Build",
            ),
            StageSpec(
                name=BUILD_RELEASE_STAGE,
                argv=("cargo", "build", "-r", "--verbose"),
                working_dir=workdir,
                description="Build release",
            ),
            _test_stage(settings, {}),
        )
    )
    return PolicyProfile(
        name=LOCAL_FIX_PROFILE,
        description="Local emulation of CI that auto-formats instead of failing.",
        stages=tuple(stages),
        default_axes={},
        axis_env={TOOLCHAIN_AXIS: TOOLCHAIN_SELECTOR_VARIABLE},
    )


DEFAULT_PROFILE_REGISTRY = ProfileRegistry()
DEFAULT_PROFILE_REGISTRY.register(CI_STRICT_PROFILE, ci_strict_profile)
DEFAULT_PROFILE_REGISTRY.register(LOCAL_FIX_PROFILE, local_fix_profile)


def get_profile(name: str, settings: PipelineSettings | None = None) -> PolicyProfile:
    """Resolve a profile from the default registry; unknown names raise ConfigurationError."""

    return DEFAULT_PROFILE_REGISTRY.get(name, settings)


def stages_for(name: str, settings: PipelineSettings | None = None) -> tuple[StageSpec, ...]:
    return get_profile(name, settings).stages


def profile_names() -> tuple[str, ...]:
    return DEFAULT_PROFILE_REGISTRY.names()


def default_axes(name: str) -> dict[str, tuple[str, ...]]:
    """Return the matrix a profile runs when the caller does not pass one."""

    return dict(get_profile(name).default_axes)


__all__ = [
    "BUILD_RELEASE_STAGE",
    "BUILD_STAGE",
    "DEFAULT_PROFILE_REGISTRY",
    "DOCS_STAGE",
    "DOC_TESTS_STAGE",
    "FORMAT_STAGE",
    "INSTALL_NEXTEST_STAGE",
    "LINT_STAGE",
    "PROVISION_STAGE",
    "PolicyProfile",
    "ProfileRegistry",
    "TESTS_STAGE",
    "ci_strict_profile",
    "default_axes",
    "get_profile",
    "local_fix_profile",
    "profile_names",
    "stages_for",
]
