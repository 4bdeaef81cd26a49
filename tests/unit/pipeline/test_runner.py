"""Pipeline runner: ordering, fail-fast, remediation, timeouts and cancellation."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from gate_orchestrator.errors import ToolNotFoundError
from gate_orchestrator.execution import CommandResult, CommandSpec
from gate_orchestrator.pipeline.matrix import Configuration
from gate_orchestrator.pipeline.profiles import stages_for
from gate_orchestrator.pipeline.runner import PipelineRunner, RunOutcome
from gate_orchestrator.pipeline.stages import FailureReason, StageOutcome, StageSpec
from gate_orchestrator.utils.concurrency import CancellationToken, ShieldedCancellationToken

BETA = Configuration.of(toolchain="beta")
AXIS_ENV = {"toolchain": "RUSTUP_TOOLCHAIN"}


def _runner(executor: object, root: Path, **kwargs: object) -> PipelineRunner:
    return PipelineRunner(
        executor,  # type: ignore[arg-type]
        project_root=root,
        axis_env=AXIS_ENV,
        **kwargs,  # type: ignore[arg-type]
    )


async def test_all_stages_pass_in_declared_order(fake_executor, project_root: Path) -> None:
    report = await _runner(fake_executor, project_root).run(BETA, stages_for("ci-strict"))

    assert report.outcome is RunOutcome.PASSED
    assert [result.stage_name for result in report.stage_results] == [
        "format",
        "lint",
        "build",
        "docs",
        "doc-tests",
        "tests",
    ]
    assert fake_executor.command_lines() == [
        "cargo fmt -- --check",
        "cargo clippy --all-targets --all-features"
        " -- -D warnings -D clippy::pedantic -D clippy::cargo",
        "cargo build --verbose",
        "cargo doc -r --no-deps",
        "cargo test --doc",
        "cargo nextest run",
    ]


async def test_fail_fast_skips_remaining_stages(fake_executor, project_root: Path) -> None:
    fake_executor.on("cargo clippy", exit_code=101, output="error: unused variable")

    report = await _runner(fake_executor, project_root).run(BETA, stages_for("ci-strict"))

    assert report.outcome is RunOutcome.FAILED
    outcomes = [
        (result.stage_name, result.outcome, result.reason) for result in report.stage_results
    ]
    assert outcomes == [
        ("format", StageOutcome.PASSED, None),
        ("lint", StageOutcome.FAILED, FailureReason.EXIT_CODE),
        ("build", StageOutcome.SKIPPED, FailureReason.FAIL_FAST),
        ("docs", StageOutcome.SKIPPED, FailureReason.FAIL_FAST),
        ("doc-tests", StageOutcome.SKIPPED, FailureReason.FAIL_FAST),
        ("tests", StageOutcome.SKIPPED, FailureReason.FAIL_FAST),
    ]
    assert len(fake_executor.calls) == 2
    assert report.first_failure is not None
    assert report.first_failure.output == "error: unused variable"
    assert [result.stage_name for result in report.executed] == ["format", "lint"]


async def test_without_fail_fast_every_stage_runs(fake_executor, project_root: Path) -> None:
    fake_executor.on("cargo build", exit_code=1)

    report = await _runner(fake_executor, project_root, fail_fast=False).run(
        BETA, stages_for("ci-strict")
    )

    assert report.outcome is RunOutcome.FAILED
    assert len(fake_executor.calls) == 6
    assert [result.outcome for result in report.stage_results].count(StageOutcome.FAILED) == 1


async def test_format_diff_fails_check_only_stage(fake_executor, project_root: Path) -> None:
    fake_executor.on("cargo fmt", output="Diff in src/lib.rs at line 3:\n-a\n+b\n")

    report = await _runner(fake_executor, project_root).run(BETA, stages_for("ci-strict"))

    assert report.stage_results[0].reason is FailureReason.DIFF_PRODUCED
    assert report.stage_results[0].exit_code == 0


async def test_remediation_stage_never_fails_on_exit_code(
    fake_executor, project_root: Path
) -> None:
    fake_executor.on("cargo fmt", exit_code=1, output="reformatted")

    report = await _runner(fake_executor, project_root).run(
        Configuration(), stages_for("local-fix")
    )

    assert report.outcome is RunOutcome.PASSED
    assert report.stage_results[0].outcome is StageOutcome.PASSED
    assert report.stage_results[0].exit_code == 1
    assert len(fake_executor.calls) == 5


async def test_timeout_fails_stage_with_timeout_reason(fake_executor, project_root: Path) -> None:
    fake_executor.on("cargo nextest", timed_out=True, output="partial")

    report = await _runner(fake_executor, project_root).run(BETA, stages_for("ci-strict"))

    last = report.stage_results[-1]
    assert last.outcome is StageOutcome.FAILED
    assert last.reason is FailureReason.TIMEOUT
    assert last.exit_code is None


async def test_materialized_command_carries_environment(
    fake_executor, project_root: Path
) -> None:
    runner = _runner(
        fake_executor,
        project_root,
        base_env={"CARGO_TERM_COLOR": "never"},
        default_timeout_seconds=30.0,
    )

    await runner.run(BETA, stages_for("ci-strict")[:1])

    (spec,) = fake_executor.calls
    assert spec.env == {
        "CARGO_TERM_COLOR": "never",
        "RUSTFLAGS": "-D warnings",
        "RUSTUP_TOOLCHAIN": "beta",
    }
    assert spec.cwd == str(project_root / "crate")
    assert spec.timeout_seconds == 30.0


async def test_stage_timeout_overrides_runner_default(fake_executor, project_root: Path) -> None:
    stage = StageSpec(name="build", argv=("cargo", "build"), timeout_seconds=5.0)

    await _runner(fake_executor, project_root, default_timeout_seconds=60.0).run(BETA, [stage])

    assert fake_executor.calls[0].timeout_seconds == 5.0


async def test_unparameterized_configuration_sets_no_toolchain(
    fake_executor, project_root: Path
) -> None:
    await _runner(fake_executor, project_root).run(Configuration(), stages_for("local-fix"))

    assert all("RUSTUP_TOOLCHAIN" not in spec.env for spec in fake_executor.calls)


async def test_cancelled_token_skips_remaining_stages(fake_executor, project_root: Path) -> None:
    token = CancellationToken()
    token.cancel()

    report = await _runner(fake_executor, project_root).run(
        BETA, stages_for("ci-strict"), cancel_token=token
    )

    assert report.outcome is RunOutcome.CANCELLED
    assert fake_executor.calls == []
    assert {result.reason for result in report.stage_results} == {FailureReason.CANCELLED}


async def test_cancellation_is_checked_between_stages(fake_executor, project_root: Path) -> None:
    token = CancellationToken()

    class CancellingExecutor:
        async def run(self, spec: CommandSpec) -> CommandResult:
            token.cancel()
            return await fake_executor.run(spec)

    report = await _runner(CancellingExecutor(), project_root).run(
        BETA, stages_for("ci-strict"), cancel_token=token
    )

    assert report.stage_results[0].outcome is StageOutcome.PASSED
    assert [result.reason for result in report.stage_results[1:]] == [FailureReason.CANCELLED] * 5
    assert report.outcome is RunOutcome.CANCELLED


async def test_remediation_stage_shields_cancellation(fake_executor, project_root: Path) -> None:
    token = ShieldedCancellationToken()

    report = await _runner(fake_executor, project_root).run(
        Configuration(), stages_for("local-fix"), cancel_token=token
    )

    assert token.is_shielded
    assert token.cancel() is False
    assert not token.is_cancelled
    assert report.passed


async def test_abort_token_behaves_like_cancellation(fake_executor, project_root: Path) -> None:
    abort = CancellationToken()
    abort.cancel()

    report = await _runner(fake_executor, project_root).run(
        BETA, stages_for("local-fix"), abort_token=abort
    )

    assert report.outcome is RunOutcome.CANCELLED


async def test_tool_not_found_propagates(fake_executor, project_root: Path) -> None:
    fake_executor.on("cargo nextest", missing_tool=True)

    with pytest.raises(ToolNotFoundError) as excinfo:
        await _runner(fake_executor, project_root).run(BETA, stages_for("ci-strict"))

    assert excinfo.value.tool == "cargo"


class _ExitCodeExecutor:
    def __init__(self, codes: list[int]) -> None:
        self._codes = iter(codes)

    async def run(self, spec: CommandSpec) -> CommandResult:
        return CommandResult(argv=spec.argv, exit_code=next(self._codes), output="", duration_ms=0)


@settings(max_examples=50, deadline=None)
@given(st.lists(st.sampled_from([0, 0, 1, 101]), min_size=6, max_size=6))
def test_fail_fast_report_shape(codes: list[int]) -> None:
    stages = [StageSpec(name=f"stage-{index}", argv=("tool", str(index))) for index in range(6)]
    runner = PipelineRunner(_ExitCodeExecutor(codes), project_root=".")

    report = asyncio.run(runner.run(Configuration(), stages))

    executed = report.executed
    assert report.stage_results[: len(executed)] == executed
    failed = [result for result in executed if result.failed]
    assert len(failed) <= 1
    if failed:
        assert executed[-1] is failed[0]
        assert all(
            result.reason is FailureReason.FAIL_FAST
            for result in report.stage_results[len(executed) :]
        )
    else:
        assert len(executed) == len(stages)
