"""
gate-orchestrator — matrix expander.

File: src/gate_orchestrator/pipeline/matrix.py

Purpose
- Turn a mapping of axis name -> ordered values into the cross-product of independent
  run configurations.

Normative behavior
- Order is deterministic: the first-declared axis varies slowest.
- An empty axis mapping yields exactly one empty configuration ("run once,
  unparameterized").
- Duplicate values inside one axis collapse to their first occurrence.
"""

from __future__ import annotations

import itertools
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field

from gate_orchestrator.errors import ConfigurationError

AxisValues = Sequence[str]
Axes = Mapping[str, AxisValues]


@dataclass(frozen=True, slots=True)
class Configuration(Mapping[str, str]):
    """One selected value per axis; immutable and hashable."""

    values: tuple[tuple[str, str], ...] = field(default=())

    def __post_init__(self) -> None:
        seen: set[str] = set()
        for axis, value in self.values:
            if axis in seen:
                raise ValueError(f"Configuration axis {axis!r} appears more than once")
            seen.add(axis)
            if not isinstance(value, str):
                raise TypeError(f"Configuration value for axis {axis!r} must be a string")

    @classmethod
    def of(cls, **values: str) -> Configuration:
        return cls(values=tuple(values.items()))

    def __getitem__(self, axis: str) -> str:
        for name, value in self.values:
            if name == axis:
                return value
        raise KeyError(axis)

    def __iter__(self) -> Iterator[str]:
        return (name for name, _ in self.values)

    def __len__(self) -> int:
        return len(self.values)

    @property
    def label(self) -> str:
        """Stable human-readable key, e.g. ``toolchain=beta`` or ``default``."""

        if not self.values:
            return "default"
        return ",".join(f"{axis}={value}" for axis, value in self.values)

    def to_dict(self) -> dict[str, str]:
        return dict(self.values)


def normalize_axes(axes: Axes) -> dict[str, tuple[str, ...]]:
    """Validate axis input and drop duplicate values, preserving declared order."""

    normalized: dict[str, tuple[str, ...]] = {}
    for axis, raw_values in axes.items():
        if not isinstance(axis, str) or not axis.strip():
            raise ConfigurationError("axis names must be non-empty strings")
        if isinstance(raw_values, (str, bytes)):
            raise ConfigurationError(f"axis {axis!r} must be a sequence of values, not a string")

        ordered: list[str] = []
        for value in raw_values:
            if not isinstance(value, str) or not value.strip():
                raise ConfigurationError(f"axis {axis!r} contains an empty or non-string value")
            candidate = value.strip()
            if candidate not in ordered:
                ordered.append(candidate)
        if not ordered:
            raise ConfigurationError(f"axis {axis!r} has no values")
        normalized[axis.strip()] = tuple(ordered)
    return normalized


def expand(axes: Axes) -> tuple[Configuration, ...]:
    """Return the full cross-product of ``axes`` in deterministic order."""

    normalized = normalize_axes(axes)
    names = tuple(normalized)
    return tuple(
        Configuration(values=tuple(zip(names, combination, strict=True)))
        for combination in itertools.product(*(normalized[name] for name in names))
    )


__all__ = ["Axes", "Configuration", "expand", "normalize_axes"]
