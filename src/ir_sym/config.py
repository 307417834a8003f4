"""Exploration settings shared by the explorer, interpreter and driver."""
from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, fields, replace
from enum import StrEnum
from pathlib import Path
from typing import Any

from .errors import ConfigError

__all__ = ["Config", "OutOfBoundsPolicy", "Strategy", "UnknownPolicy", "Watchpoint"]


class Strategy(StrEnum):
    DFS = "dfs"
    BFS = "bfs"


class UnknownPolicy(StrEnum):
    """What to do when the solver cannot decide a path condition in time."""

    ASSUME_FEASIBLE = "assume_feasible"
    PRUNE = "prune"


class OutOfBoundsPolicy(StrEnum):
    """``report`` forks a memory-error outcome; ``symbolic`` reads garbage and drops writes."""

    REPORT = "report"
    SYMBOLIC = "symbolic"


_ENUM_FIELDS: dict[str, type[StrEnum]] = {
    "strategy": Strategy,
    "unknown_policy": UnknownPolicy,
    "out_of_bounds": OutOfBoundsPolicy,
}

@dataclass(slots=True, frozen=True)
class Watchpoint:
    """``size`` bytes of the global ``symbol``, starting ``offset`` bytes in."""

    symbol: str
    offset: int = 0
    size: int = 1

    def __post_init__(self) -> None:
        if not isinstance(self.symbol, str) or not self.symbol:
            raise ConfigError(f"Watchpoint symbol must be a non-empty string, got {self.symbol!r}")
        if isinstance(self.offset, bool) or not isinstance(self.offset, int) or self.offset < 0:
            raise ConfigError(f"Watchpoint offset must be a non-negative integer, got {self.offset!r}")
        if isinstance(self.size, bool) or not isinstance(self.size, int) or self.size < 1:
            raise ConfigError(f"Watchpoint size must be a positive integer, got {self.size!r}")

    @classmethod
    def from_spec(cls, spec: Watchpoint | Mapping[str, Any]) -> Watchpoint:
        if isinstance(spec, Watchpoint):
            return spec
        if not isinstance(spec, Mapping):
            raise ConfigError(f"Watchpoint must be a mapping, got {spec!r}")
        unknown = sorted(set(spec) - {"symbol", "offset", "size"})
        if unknown:
            raise ConfigError(f"Unknown watchpoint key(s): {', '.join(unknown)}")
        if "symbol" not in spec:
            raise ConfigError("Watchpoint needs a 'symbol'")
        return cls(**dict(spec))


_POSITIVE_INT_FIELDS = (
    "loop_bound",
    "recursion_bound",
    "max_call_depth",
    "max_paths",
    "solver_timeout_ms",
    "entry_buffer_size",
    "max_symbolic_allocation",
)


@dataclass(slots=True, frozen=True)
class Config:
    loop_bound: int = 10
    recursion_bound: int = 10
    max_call_depth: int = 64
    max_paths: int = 1024
    solver_timeout_ms: int = 5000
    unknown_policy: UnknownPolicy = UnknownPolicy.ASSUME_FEASIBLE
    out_of_bounds: OutOfBoundsPolicy = OutOfBoundsPolicy.REPORT
    strategy: Strategy = Strategy.DFS
    entry_buffer_size: int = 256
    max_symbolic_allocation: int = 4096
    time_limit: float | None = None
    function_hooks: Mapping[str, Callable[..., Any]] = field(default_factory=dict)
    watchpoints: Mapping[str, Watchpoint] = field(default_factory=dict)
    instruction_callbacks: tuple[Callable[..., Any], ...] = ()

    def __post_init__(self) -> None:
        for name in _POSITIVE_INT_FIELDS:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise ConfigError(f"'{name}' must be a positive integer, got {value!r}")
        for name, enum_type in _ENUM_FIELDS.items():
            value = getattr(self, name)
            if not isinstance(value, enum_type):
                try:
                    object.__setattr__(self, name, enum_type(value))
                except ValueError as exc:
                    allowed = ", ".join(member.value for member in enum_type)
                    raise ConfigError(f"'{name}' must be one of {allowed}, got {value!r}") from exc
        if self.time_limit is not None:
            if isinstance(self.time_limit, bool) or not isinstance(self.time_limit, int | float) or self.time_limit <= 0:
                raise ConfigError(f"'time_limit' must be a positive number of seconds, got {self.time_limit!r}")
        for name, hook in self.function_hooks.items():
            if not callable(hook):
                raise ConfigError(f"Hook for '{name}' is not callable")
        if not isinstance(self.watchpoints, Mapping):
            raise ConfigError("'watchpoints' must map names to watchpoints")
        object.__setattr__(
            self, "watchpoints", {name: Watchpoint.from_spec(spec) for name, spec in self.watchpoints.items()}
        )
        object.__setattr__(self, "instruction_callbacks", tuple(self.instruction_callbacks))
        for callback in self.instruction_callbacks:
            if not callable(callback):
                raise ConfigError(f"Instruction callback {callback!r} is not callable")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> Config:
        """Build a config from a dict, e.g. a parsed JSON file."""
        if not isinstance(data, Mapping):
            raise ConfigError("Configuration must be a mapping")
        known = {f.name for f in fields(cls)} - {"function_hooks", "instruction_callbacks"}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown configuration key(s): {', '.join(unknown)}")
        return cls(**dict(data))

    @classmethod
    def from_file(cls, path: str | Path) -> Config:
        try:
            data = json.loads(Path(path).read_text())
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigError(f"Cannot read configuration {path}: {exc}") from exc
        return cls.from_mapping(data)

    def with_overrides(self, **overrides: Any) -> Config:
        """Copy with the non-``None`` overrides applied."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        unknown = sorted(set(changes) - {f.name for f in fields(self)})
        if unknown:
            raise ConfigError(f"Unknown configuration key(s): {', '.join(unknown)}")
        return replace(self, **changes)
