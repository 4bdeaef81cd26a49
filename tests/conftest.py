"""Shared fixtures: a scripted in-memory executor and a project layout on disk."""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

import pytest
import structlog

from gate_orchestrator.constants import DEFAULT_PROJECT_DIR, TOOLCHAIN_SELECTOR_VARIABLE
from gate_orchestrator.errors import ToolNotFoundError
from gate_orchestrator.execution import CommandResult, CommandSpec


@dataclass(frozen=True, slots=True)
class _Rule:
    prefix: str
    toolchain: str | None
    exit_code: int
    output: str
    timed_out: bool
    missing_tool: bool
    delay: float

    def matches(self, spec: CommandSpec) -> bool:
        if not spec.command_line().startswith(self.prefix):
            return False
        if self.toolchain is None:
            return True
        return spec.env.get(TOOLCHAIN_SELECTOR_VARIABLE) == self.toolchain


class FakeExecutor:
    """Records every ``CommandSpec`` and answers from first-match rules.

    Unmatched commands exit 0 with no output.
    """

    def __init__(self, *, default_delay: float = 0.0) -> None:
        self.calls: list[CommandSpec] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._default_delay = default_delay
        self._rules: list[_Rule] = []

    def on(
        self,
        prefix: str,
        *,
        toolchain: str | None = None,
        exit_code: int = 0,
        output: str = "",
        timed_out: bool = False,
        missing_tool: bool = False,
        delay: float | None = None,
    ) -> FakeExecutor:
        self._rules.append(
            _Rule(
                prefix=prefix,
                toolchain=toolchain,
                exit_code=exit_code,
                output=output,
                timed_out=timed_out,
                missing_tool=missing_tool,
                delay=self._default_delay if delay is None else delay,
            )
        )
        return self

    def command_lines(self, toolchain: str | None = None) -> list[str]:
        return [
            spec.command_line()
            for spec in self.calls
            if toolchain is None or spec.env.get(TOOLCHAIN_SELECTOR_VARIABLE) == toolchain
        ]

    async def run(self, spec: CommandSpec) -> CommandResult:
        self.calls.append(spec)
        rule = next((item for item in self._rules if item.matches(spec)), None)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(rule.delay if rule is not None else self._default_delay)
        finally:
            self.in_flight -= 1

        if rule is None:
            return CommandResult(argv=spec.argv, exit_code=0, output="", duration_ms=1)
        if rule.missing_tool:
            raise ToolNotFoundError(spec.program, "No such file or directory")
        return CommandResult(
            argv=spec.argv,
            exit_code=None if rule.timed_out else rule.exit_code,
            output=rule.output,
            duration_ms=1,
            timed_out=rule.timed_out,
        )


@pytest.fixture
def fake_executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    (tmp_path / DEFAULT_PROJECT_DIR).mkdir()
    return tmp_path


@pytest.fixture(autouse=True)
def _reset_structlog() -> Iterator[None]:
    yield
    structlog.reset_defaults()
