"""Command-line interface router for gate-orchestrator."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from gate_orchestrator.config import (
    ConfigLoadError,
    ConfigValidationError,
    dump_effective_config,
    load_config,
)
from gate_orchestrator.constants import CI_STRICT_PROFILE, TEST_RUNNERS, TOOLCHAIN_AXIS
from gate_orchestrator.errors import ConfigurationError, ToolNotFoundError
from gate_orchestrator.execution import CommandExecutor, LocalSubprocessExecutor
from gate_orchestrator.observability import configure_from_config
from gate_orchestrator.pipeline import Orchestrator, PipelineSettings, profile_names
from gate_orchestrator.pipeline.profiles import DEFAULT_PROFILE_REGISTRY
from gate_orchestrator.ui.render import CLIRenderer, create_renderer


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 1

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="gate",
        description=(
            "gate-orchestrator: run a Rust crate's quality gates across toolchains.\n\n"
            "Common workflows:\n"
            "  gate run --profile ci-strict      Read-only CI checks on stable/beta/nightly\n"
            "  gate run --profile local-fix      Auto-format, then lint, build and test\n"
            "  gate profiles                     Show profiles and their stages\n"
            "  gate config                       Show the effective configuration\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--project-root",
        default=".",
        help="Repository root directory (default: current working directory).",
    )
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to gate TOML config (default: <project-root>/gate.toml if present).",
    )
    common.add_argument(
        "--json",
        action="store_true",
        default=False,
        help="Emit machine-readable JSON on stdout.",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Show detailed output and INFO-level logs.",
    )
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable colored output (also respects NO_COLOR env var).",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # run -----------------------------------------------------------------
    run_parser = subparsers.add_parser(
        "run",
        parents=[common],
        help="Run a policy profile over the toolchain matrix",
        description=(
            "Run every stage of a policy profile once per matrix configuration.\n\n"
            "Examples:\n"
            "  gate run --profile ci-strict\n"
            "  gate run --profile ci-strict --toolchain stable --max-parallel 1\n"
            "  gate run --profile local-fix --test-runner cargo-test\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    run_parser.add_argument(
        "--profile",
        default=CI_STRICT_PROFILE,
        help=f"Policy profile to run (default: {CI_STRICT_PROFILE}).",
    )
    run_parser.add_argument(
        "--toolchain",
        dest="toolchains",
        action="append",
        default=None,
        metavar="ID",
        help="Toolchain to include in the matrix; repeatable. Overrides profile defaults.",
    )
    run_parser.add_argument(
        "--max-parallel",
        type=int,
        default=None,
        help="Maximum configurations running at once (0 = all).",
    )
    run_parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Per-stage timeout in seconds.",
    )
    run_parser.add_argument(
        "--cancel-on-failure",
        action="store_true",
        default=None,
        help="Stop sibling configurations before their next stage once one fails.",
    )
    run_parser.add_argument(
        "--no-fail-fast",
        action="store_true",
        default=False,
        help="Keep running stages after a failure.",
    )
    run_parser.add_argument(
        "--provision",
        action="store_true",
        default=None,
        help="Install each toolchain (and cargo-nextest) before the first stage.",
    )
    run_parser.add_argument(
        "--test-runner",
        choices=TEST_RUNNERS,
        default=None,
        help="Test stage runner.",
    )
    run_parser.set_defaults(handler=_cmd_run)

    # profiles ------------------------------------------------------------
    profiles_parser = subparsers.add_parser(
        "profiles",
        parents=[common],
        help="List policy profiles and their ordered stages",
    )
    profiles_parser.set_defaults(handler=_cmd_profiles)

    # config --------------------------------------------------------------
    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Print the effective configuration",
    )
    config_parser.set_defaults(handler=_cmd_config)

    return parser


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_run(args: argparse.Namespace) -> int:
    project_root = _project_root(args)
    config = _load_effective_config(args, project_root, cli_overrides=_run_overrides(args))
    configure_from_config(config, verbose=_flag(args, "verbose"))

    try:
        settings = PipelineSettings.from_config(config)
        orchestrator = Orchestrator(
            _build_executor(settings),
            settings=settings,
            project_root=project_root,
        )
        report = asyncio.run(orchestrator.execute(_axes(args), args.profile))
    except ConfigurationError as exc:
        raise CLIError(str(exc), exit_code=2) from exc
    except ToolNotFoundError as exc:
        raise CLIError(str(exc), exit_code=1) from exc

    if _flag(args, "json"):
        _emit_json({"command": "run", **report.to_dict()})
    else:
        _get_renderer(args).report(report)
    return 0 if report.passed else 1


def _cmd_profiles(args: argparse.Namespace) -> int:
    project_root = _project_root(args)
    config = _load_effective_config(args, project_root)
    try:
        settings = PipelineSettings.from_config(config)
    except ConfigurationError as exc:
        raise CLIError(str(exc), exit_code=2) from exc
    profiles = [DEFAULT_PROFILE_REGISTRY.get(name, settings) for name in profile_names()]

    if _flag(args, "json"):
        _emit_json(
            {"command": "profiles", "profiles": [profile.to_dict() for profile in profiles]}
        )
        return 0

    _get_renderer(args).profiles(profiles)
    return 0


def _cmd_config(args: argparse.Namespace) -> int:
    project_root = _project_root(args)
    config = _load_effective_config(args, project_root)

    if _flag(args, "json"):
        _emit_json({"command": "config", "config": json.loads(dump_effective_config(config))})
        return 0

    renderer = _get_renderer(args)
    renderer.kv("Config file", _optional_str(getattr(args, "config_path", None)) or "(default)")
    renderer.text(json.dumps(config, indent=2, sort_keys=True, ensure_ascii=False))
    return 0


# ---------------------------------------------------------------------------
# Rendering helpers
# ---------------------------------------------------------------------------


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    """Create a CLI renderer from the parsed namespace."""

    return create_renderer(no_color=_flag(args, "no_color"), verbose=_flag(args, "verbose"))


# ---------------------------------------------------------------------------
# Helpers: config and paths
# ---------------------------------------------------------------------------


def _build_executor(settings: PipelineSettings) -> CommandExecutor:
    return LocalSubprocessExecutor(default_timeout_seconds=settings.stage_timeout_seconds)


def _project_root(args: argparse.Namespace) -> Path:
    raw = _optional_str(getattr(args, "project_root", None)) or "."
    candidate = Path(raw).expanduser().resolve()
    if not candidate.is_dir():
        raise CLIError(f"project root is not a directory: {candidate}", exit_code=2)
    return candidate


def _load_effective_config(
    args: argparse.Namespace,
    project_root: Path,
    *,
    cli_overrides: Mapping[str, object] | None = None,
) -> dict[str, Any]:
    config_path = _optional_str(getattr(args, "config_path", None))
    try:
        return load_config(config_path, search_dir=project_root, cli_overrides=cli_overrides)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=2) from exc


def _run_overrides(args: argparse.Namespace) -> dict[str, object]:
    overrides: dict[str, object] = {
        "pipeline.max_parallel": getattr(args, "max_parallel", None),
        "pipeline.stage_timeout_seconds": getattr(args, "timeout", None),
        "pipeline.cancel_on_failure": getattr(args, "cancel_on_failure", None),
        "pipeline.provision_toolchain": getattr(args, "provision", None),
        "pipeline.test_runner": getattr(args, "test_runner", None),
    }
    if _flag(args, "no_fail_fast"):
        overrides["pipeline.fail_fast"] = False
    return {key: value for key, value in overrides.items() if value is not None}


def _axes(args: argparse.Namespace) -> dict[str, tuple[str, ...]] | None:
    toolchains = getattr(args, "toolchains", None)
    if not toolchains:
        return None
    return {TOOLCHAIN_AXIS: tuple(toolchains)}


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


def _optional_str(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


__all__ = ["CLIError", "build_parser", "run_cli"]
