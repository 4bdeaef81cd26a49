"""Output rendering for the gate CLI.

File: src/gate_orchestrator/ui/render.py

Purpose
- Provide a thin plain-text rendering layer for run reports and profile listings.
- Respect NO_COLOR environment variable and --no-color CLI flag.

Functional requirements
- Plain-text rendering must always work without external dependencies.
- Failing stages show their captured output tail; verbose mode shows all of it.
"""

from __future__ import annotations

import os
import sys
from collections.abc import Mapping, Sequence
from typing import Final, TextIO

from gate_orchestrator.pipeline.orchestrator import AggregateReport
from gate_orchestrator.pipeline.profiles import PolicyProfile
from gate_orchestrator.pipeline.stages import StageOutcome, StageResult

OUTPUT_TAIL_LINES: Final[int] = 40

_GREEN: Final[str] = "\x1b[32m"
_RED: Final[str] = "\x1b[31m"
_DIM: Final[str] = "\x1b[2m"
_RESET: Final[str] = "\x1b[0m"


def _color_allowed(no_color_flag: bool, stream: TextIO, environ: Mapping[str, str]) -> bool:
    """Check whether color output should be attempted."""

    if no_color_flag:
        return False
    if environ.get("NO_COLOR", ""):
        return False
    return hasattr(stream, "isatty") and stream.isatty()


class CLIRenderer:
    """Thin CLI output renderer.

    Produces clean, deterministic plain-text output.
    Respects ``NO_COLOR`` env var and ``--no-color`` flag.
    """

    def __init__(
        self,
        *,
        no_color: bool = False,
        verbose: bool = False,
        stream: TextIO | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.verbose = verbose
        self._stream = stream if stream is not None else sys.stdout
        self._color = _color_allowed(
            no_color, self._stream, os.environ if environ is None else environ
        )

    def text(self, line: str) -> None:
        """Print a plain text line."""

        print(line, file=self._stream)

    def kv(self, key: str, value: object) -> None:
        """Print a key: value pair."""

        self.text(f"{key}: {value}")

    def section(self, title: str) -> None:
        """Print a section header with a preceding blank line."""

        self.text(f"\n{title}")

    def table(
        self,
        headers: Sequence[str],
        rows: Sequence[Sequence[str]],
        *,
        title: str | None = None,
    ) -> None:
        """Print a formatted ASCII table."""

        if not rows:
            return

        col_count = len(headers)
        widths = [len(h) for h in headers]
        for row in rows:
            for i in range(min(len(row), col_count)):
                widths[i] = max(widths[i], len(str(row[i])))

        def _pad(cells: Sequence[str]) -> str:
            parts: list[str] = []
            for i in range(col_count):
                cell = str(cells[i]) if i < len(cells) else ""
                parts.append(cell.ljust(widths[i]))
            return "  ".join(parts).rstrip()

        if title:
            self.section(title)
        self.text(f"  {_pad(list(headers))}")
        self.text(f"  {'  '.join('-' * w for w in widths)}")
        for row in rows:
            self.text(f"  {_pad(list(row))}")

    def report(self, report: AggregateReport) -> None:
        """Render per-configuration stage tables, failure output and the verdict."""

        for run in report.run_reports:
            rows = [
                (
                    result.stage_name,
                    self._status(result.outcome),
                    result.reason.value if result.reason is not None else "",
                    "" if result.exit_code is None else str(result.exit_code),
                    "" if result.skipped else f"{result.duration_ms}ms",
                )
                for result in run.stage_results
            ]
            self.table(
                ("stage", "outcome", "reason", "exit", "duration"),
                rows,
                title=f"[{run.configuration.label}] {run.outcome.value}",
            )

        for label, failure in report.failures().items():
            self._failure_output(label, failure)

        verdict = self._paint(
            report.outcome.value.upper(), _GREEN if report.passed else _RED
        )
        self.section(f"{report.profile}: {verdict} ({len(report.run_reports)} configuration(s))")

    def profiles(self, profiles: Sequence[PolicyProfile]) -> None:
        """List profiles with their ordered stages."""

        for index, profile in enumerate(profiles):
            if index:
                self.text("")
            self.text(f"{profile.name}: {profile.description}")
            if profile.default_axes:
                axes = ", ".join(
                    f"{axis}={'/'.join(values)}" for axis, values in profile.default_axes.items()
                )
                self.text(f"  default matrix: {axes}")
            for position, stage in enumerate(profile.stages, start=1):
                marker = " (remediation)" if stage.remediation else ""
                self.text(f"  {position}. {stage.name}: {' '.join(stage.argv)}{marker}")

    def _failure_output(self, label: str, failure: StageResult) -> None:
        self.section(f"--- {label} / {failure.stage_name}: {failure.command_line}")
        lines = failure.output.splitlines()
        if not self.verbose and len(lines) > OUTPUT_TAIL_LINES:
            omitted = len(lines) - OUTPUT_TAIL_LINES
            self.text(self._paint(f"... {omitted} line(s) omitted, use --verbose", _DIM))
            lines = lines[-OUTPUT_TAIL_LINES:]
        for line in lines:
            self.text(line)

    def _status(self, outcome: StageOutcome) -> str:
        if outcome is StageOutcome.PASSED:
            return self._paint(outcome.value, _GREEN)
        if outcome is StageOutcome.FAILED:
            return self._paint(outcome.value, _RED)
        return outcome.value

    def _paint(self, text: str, color: str) -> str:
        if not self._color:
            return text
        return f"{color}{text}{_RESET}"


def create_renderer(
    *,
    no_color: bool = False,
    verbose: bool = False,
    stream: TextIO | None = None,
) -> CLIRenderer:
    """Create a CLI renderer with the given settings."""

    return CLIRenderer(no_color=no_color, verbose=verbose, stream=stream)


__all__ = ["OUTPUT_TAIL_LINES", "CLIRenderer", "create_renderer"]
