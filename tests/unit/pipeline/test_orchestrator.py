"""Matrix orchestration scenarios over a scripted executor."""

from __future__ import annotations

from pathlib import Path

import pytest

from gate_orchestrator.errors import (
    ConfigurationError,
    StageFailedError,
    StageTimeoutError,
    ToolNotFoundError,
)
from gate_orchestrator.pipeline.orchestrator import Orchestrator
from gate_orchestrator.pipeline.runner import RunOutcome
from gate_orchestrator.pipeline.settings import PipelineSettings
from gate_orchestrator.pipeline.stages import FailureReason, StageOutcome

CI_STAGES = ["format", "lint", "build", "docs", "doc-tests", "tests"]


def _orchestrator(
    executor: object,
    root: Path,
    *,
    environ: dict[str, str] | None = None,
    **settings: object,
) -> Orchestrator:
    return Orchestrator(
        executor,  # type: ignore[arg-type]
        settings=PipelineSettings(**settings),  # type: ignore[arg-type]
        project_root=root,
        environ={} if environ is None else environ,
    )


async def test_ci_strict_all_pass_across_three_toolchains(
    fake_executor, project_root: Path
) -> None:
    report = await _orchestrator(fake_executor, project_root).execute(
        {"toolchain": ["stable", "beta", "nightly"]}, "ci-strict"
    )

    assert report.outcome is RunOutcome.PASSED
    assert [run.configuration.label for run in report.run_reports] == [
        "toolchain=stable",
        "toolchain=beta",
        "toolchain=nightly",
    ]
    for run in report.run_reports:
        assert [result.stage_name for result in run.stage_results] == CI_STAGES
        assert all(result.outcome is StageOutcome.PASSED for result in run.stage_results)
    assert len(fake_executor.calls) == 18


async def test_ci_strict_uses_default_toolchains_when_axes_omitted(
    fake_executor, project_root: Path
) -> None:
    report = await _orchestrator(fake_executor, project_root).execute(profile_name="ci-strict")

    assert [run.configuration["toolchain"] for run in report.run_reports] == [
        "stable",
        "beta",
        "nightly",
    ]


async def test_lint_failure_on_beta_fails_only_beta(fake_executor, project_root: Path) -> None:
    fake_executor.on("cargo clippy", toolchain="beta", exit_code=101, output="error: lint")

    report = await _orchestrator(fake_executor, project_root).execute(
        {"toolchain": ["stable", "beta", "nightly"]}, "ci-strict"
    )

    assert report.outcome is RunOutcome.FAILED
    beta = report.report_for("toolchain=beta")
    assert [result.outcome for result in beta.stage_results] == [
        StageOutcome.PASSED,
        StageOutcome.FAILED,
        StageOutcome.SKIPPED,
        StageOutcome.SKIPPED,
        StageOutcome.SKIPPED,
        StageOutcome.SKIPPED,
    ]
    assert report.report_for("toolchain=stable").passed
    assert report.report_for("toolchain=nightly").passed
    assert list(report.failures()) == ["toolchain=beta"]
    assert len(fake_executor.command_lines("beta")) == 2
    assert len(fake_executor.command_lines("stable")) == 6


async def test_local_fix_runs_once_and_format_always_passes(
    fake_executor, project_root: Path
) -> None:
    fake_executor.on("cargo fmt", exit_code=1)

    report = await _orchestrator(fake_executor, project_root).execute(None, "local-fix")

    assert report.passed
    (run,) = report.run_reports
    assert run.configuration.label == "default"
    assert run.stage_results[0].stage_name == "format"
    assert run.stage_results[0].outcome is StageOutcome.PASSED


async def test_unknown_profile_fails_before_any_spawn(fake_executor, project_root: Path) -> None:
    with pytest.raises(ConfigurationError):
        await _orchestrator(fake_executor, project_root).execute(None, "does-not-exist")

    assert fake_executor.calls == []


async def test_invalid_axis_fails_before_any_spawn(fake_executor, project_root: Path) -> None:
    with pytest.raises(ConfigurationError):
        await _orchestrator(fake_executor, project_root).execute({"toolchain": []}, "ci-strict")

    assert fake_executor.calls == []


async def test_missing_project_dir_fails_before_any_spawn(fake_executor, tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError, match="crate"):
        await _orchestrator(fake_executor, tmp_path).execute(None, "ci-strict")

    assert fake_executor.calls == []


async def test_provision_requires_toolchain_axis(fake_executor, project_root: Path) -> None:
    orchestrator = _orchestrator(fake_executor, project_root, provision_toolchain=True)

    with pytest.raises(ConfigurationError, match="toolchain"):
        await orchestrator.execute(None, "local-fix")

    assert fake_executor.calls == []


async def test_provision_installs_each_toolchain_first(fake_executor, project_root: Path) -> None:
    orchestrator = _orchestrator(fake_executor, project_root, provision_toolchain=True)

    await orchestrator.execute({"toolchain": ["nightly"]}, "local-fix")

    first = fake_executor.calls[0]
    assert first.argv[:4] == ("rustup", "toolchain", "install", "nightly")
    assert first.cwd == str(project_root / ".")


async def test_provision_installs_nextest_before_every_configuration(
    fake_executor, project_root: Path
) -> None:
    orchestrator = _orchestrator(fake_executor, project_root, provision_toolchain=True)

    report = await orchestrator.execute({"toolchain": ["stable", "beta"]}, "ci-strict")

    assert report.passed
    for toolchain in ("stable", "beta"):
        lines = fake_executor.command_lines(toolchain)
        assert lines[:2] == [
            f"rustup toolchain install {toolchain} --component rustfmt --component clippy",
            "cargo install cargo-nextest --locked",
        ]
        assert lines[-1] == "cargo nextest run"
    assert [result.stage_name for result in report.run_reports[0].stage_results] == [
        "provision",
        "install-nextest",
        *CI_STAGES,
    ]


async def test_failed_nextest_install_skips_checks(fake_executor, project_root: Path) -> None:
    fake_executor.on("cargo install cargo-nextest", exit_code=101, output="error: no network")
    orchestrator = _orchestrator(fake_executor, project_root, provision_toolchain=True)

    report = await orchestrator.execute({"toolchain": ["stable"]}, "local-fix")

    results = report.run_reports[0].stage_results
    assert results[1].stage_name == "install-nextest"
    assert results[1].outcome is StageOutcome.FAILED
    assert all(result.outcome is StageOutcome.SKIPPED for result in results[2:])


async def test_color_variable_is_propagated_from_environment(
    fake_executor, project_root: Path
) -> None:
    orchestrator = _orchestrator(
        fake_executor, project_root, environ={"CARGO_TERM_COLOR": "never"}
    )

    await orchestrator.execute({"toolchain": ["stable"]}, "local-fix")

    assert {spec.env["CARGO_TERM_COLOR"] for spec in fake_executor.calls} == {"never"}


async def test_color_variable_defaults_to_always(fake_executor, project_root: Path) -> None:
    await _orchestrator(fake_executor, project_root).execute(None, "local-fix")

    assert {spec.env["CARGO_TERM_COLOR"] for spec in fake_executor.calls} == {"always"}


async def test_max_parallel_bounds_concurrent_configurations(
    fake_executor, project_root: Path
) -> None:
    fake_executor.on("", delay=0.01)

    await _orchestrator(fake_executor, project_root, max_parallel=1).execute(
        {"toolchain": ["stable", "beta", "nightly"]}, "local-fix"
    )

    assert fake_executor.max_in_flight == 1


async def test_configurations_run_concurrently_by_default(
    fake_executor, project_root: Path
) -> None:
    fake_executor.on("", delay=0.02)

    await _orchestrator(fake_executor, project_root).execute(
        {"toolchain": ["stable", "beta", "nightly"]}, "local-fix"
    )

    assert fake_executor.max_in_flight == 3


async def test_cancel_on_failure_stops_siblings_between_stages(
    fake_executor, project_root: Path
) -> None:
    fake_executor.on("cargo fmt", toolchain="stable", exit_code=1, delay=0.0)
    fake_executor.on("", delay=0.05)

    report = await _orchestrator(fake_executor, project_root, cancel_on_failure=True).execute(
        {"toolchain": ["stable", "beta"]}, "ci-strict"
    )

    assert report.outcome is RunOutcome.FAILED
    beta = report.report_for("toolchain=beta")
    assert beta.outcome is RunOutcome.CANCELLED
    assert beta.stage_results[0].outcome is StageOutcome.PASSED
    assert beta.stage_results[1].reason is FailureReason.CANCELLED


async def test_cancel_on_failure_is_ignored_once_remediation_started(
    fake_executor, project_root: Path
) -> None:
    fake_executor.on("cargo clippy", toolchain="stable", exit_code=1, delay=0.0)
    fake_executor.on("", delay=0.02)

    report = await _orchestrator(fake_executor, project_root, cancel_on_failure=True).execute(
        {"toolchain": ["stable", "beta"]}, "local-fix"
    )

    assert report.report_for("toolchain=stable").outcome is RunOutcome.FAILED
    assert report.report_for("toolchain=beta").passed


async def test_tool_not_found_aborts_after_in_flight_stages_drain(
    fake_executor, project_root: Path
) -> None:
    fake_executor.on("cargo fmt", toolchain="stable", missing_tool=True)
    fake_executor.on("", delay=0.02)

    with pytest.raises(ToolNotFoundError):
        await _orchestrator(fake_executor, project_root).execute(
            {"toolchain": ["stable", "beta"]}, "ci-strict"
        )

    assert fake_executor.command_lines("beta") == ["cargo fmt -- --check"]
    assert fake_executor.in_flight == 0


async def test_raise_for_outcome_maps_timeouts(fake_executor, project_root: Path) -> None:
    fake_executor.on("cargo nextest", timed_out=True)

    report = await _orchestrator(fake_executor, project_root).execute(
        {"toolchain": ["stable"]}, "ci-strict"
    )

    with pytest.raises(StageTimeoutError) as excinfo:
        report.raise_for_outcome()
    assert isinstance(excinfo.value, StageFailedError)
    assert excinfo.value.stage_name == "tests"
    assert excinfo.value.configuration_label == "toolchain=stable"


async def test_aggregate_report_serializes(fake_executor, project_root: Path) -> None:
    report = await _orchestrator(fake_executor, project_root).execute(
        {"toolchain": ["stable"]}, "local-fix"
    )

    payload = report.to_dict()
    assert payload["profile"] == "local-fix"
    assert payload["outcome"] == "passed"
    (configuration,) = payload["configurations"]  # type: ignore[misc]
    assert configuration["label"] == "toolchain=stable"
    report.raise_for_outcome()
