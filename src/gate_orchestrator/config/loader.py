"""
gate-orchestrator — runtime config loader.

File: src/gate_orchestrator/config/loader.py

Purpose
- Build the effective runtime config from built-in defaults, ``gate.toml``, ``GATE_*``
  environment variables and CLI flags, in increasing order of precedence.

Environment mapping
- Every scalar setting has exactly one variable: ``[pipeline] max_parallel`` is
  ``GATE_PIPELINE_MAX_PARALLEL``. Values are coerced to the type of the built-in
  default (bool accepts true/false/1/0/yes/no/on/off).
- ``meta.schema_version`` is file-only.

Functional requirements
- A missing default ``gate.toml`` is not an error; a missing explicit path is.
- The merged result is re-validated after every overlay so errors name the final value.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Iterator, Mapping
from pathlib import Path
from typing import Any, Final

from gate_orchestrator.config.schema import assert_valid_config, default_config, merge_config
from gate_orchestrator.errors import ConfigurationError

DEFAULT_CONFIG_FILE: Final[str] = "gate.toml"
ENV_PREFIX: Final[str] = "GATE_"

_FILE_ONLY_KEYS: Final[frozenset[tuple[str, ...]]] = frozenset({("meta", "schema_version")})
_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_FALSY: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})


class ConfigLoadError(ConfigurationError):
    """Raised when config cannot be loaded or overrides cannot be coerced."""


def load_config(
    config_path: str | Path | None = None,
    *,
    search_dir: str | Path | None = None,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Load effective config with deterministic precedence: CLI > env > file > defaults.

    ``config_path`` wins over ``search_dir``; without either, ``./gate.toml`` is tried.
    ``cli_overrides`` uses dotted keys (``"pipeline.max_parallel"``); ``None`` values
    are treated as "flag not given".
    """

    if config_path is not None:
        source = Path(config_path).expanduser().resolve()
        file_layer = _read_toml(source, required=True)
    else:
        base = Path.cwd() if search_dir is None else Path(search_dir)
        file_layer = _read_toml((base / DEFAULT_CONFIG_FILE).resolve(), required=False)

    effective = assert_valid_config(merge_config(default_config(), file_layer))

    env_layer = _env_layer(dict(os.environ) if environ is None else environ)
    effective = assert_valid_config(merge_config(effective, env_layer))

    cli_layer = _dotted_layer(cli_overrides or {})
    return assert_valid_config(merge_config(effective, cli_layer))


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Return deterministic JSON dump of effective config."""

    return json.dumps(config, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def env_bindings() -> dict[str, str]:
    """Map each supported ``GATE_*`` variable to its dotted config path."""

    return {_env_name(path): ".".join(path) for path, _ in _settings(default_config())}


def _read_toml(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.is_file():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}
    try:
        parsed = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc
    return parsed


def _settings(
    tree: Mapping[str, object], parents: tuple[str, ...] = ()
) -> Iterator[tuple[tuple[str, ...], object]]:
    """Yield ``(path, default)`` for every env-overridable scalar, sorted by path."""

    for key in sorted(tree):
        node = tree[key]
        path = (*parents, key)
        if isinstance(node, Mapping):
            yield from _settings(node, path)
        elif path not in _FILE_ONLY_KEYS:
            yield path, node


def _env_name(path: tuple[str, ...]) -> str:
    return ENV_PREFIX + "_".join(segment.upper() for segment in path)


def _env_layer(environ: Mapping[str, str]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for path, template in _settings(default_config()):
        name = _env_name(path)
        if name in environ:
            _assign(layer, path, _coerce(environ[name], template, name))
    return layer


def _coerce(raw: str, template: object, name: str) -> object:
    text = raw.strip()
    if isinstance(template, bool):
        lowered = text.lower()
        if lowered in _TRUTHY or lowered in _FALSY:
            return lowered in _TRUTHY
        raise ConfigLoadError(f"{name} must be a boolean (true/false/1/0/yes/no/on/off)")
    if isinstance(template, (int, float)):
        kind = type(template)
        try:
            return kind(text)
        except ValueError as exc:
            expected = "an integer" if kind is int else "a number"
            raise ConfigLoadError(f"{name} must be {expected}, got {raw!r}") from exc
    return text


def _dotted_layer(overrides: Mapping[str, object]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for dotted, value in sorted(overrides.items()):
        if value is None:
            continue
        path = tuple(segment for segment in dotted.split(".") if segment)
        if not path:
            raise ConfigLoadError(f"invalid CLI override key {dotted!r}")
        _assign(layer, path, value)
    return layer


def _assign(tree: dict[str, Any], path: tuple[str, ...], value: object) -> None:
    *parents, leaf = path
    for segment in parents:
        tree = tree.setdefault(segment, {})
    tree[leaf] = value


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "dump_effective_config",
    "env_bindings",
    "load_config",
]
