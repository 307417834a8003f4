"""Terminal records produced by exploration."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

import z3

from ..ir.types import IntType, Type
from .state import BoundHit, ExecutionState, StateStatus, WatchEvent
from .values import SymbolicValue

__all__ = [
    "ExplorationResult",
    "ExplorationStats",
    "Outcome",
    "OutcomeKind",
    "StopReason",
]


class OutcomeKind(StrEnum):
    RETURN = "return"
    UNCAUGHT_EXCEPTION = "uncaught_exception"
    BOUND_EXCEEDED = "bound_exceeded"
    ABORT = "abort"
    MEMORY_ERROR = "memory_error"
    ERROR = "error"


class StopReason(StrEnum):
    COMPLETED = "completed"
    TARGET_FOUND = "target_found"
    MAX_PATHS = "max_paths"
    TIME_LIMIT = "time_limit"
    CANCELLED = "cancelled"


_KIND_BY_STATUS: dict[StateStatus, OutcomeKind] = {
    StateStatus.RETURNED: OutcomeKind.RETURN,
    StateStatus.UNCAUGHT: OutcomeKind.UNCAUGHT_EXCEPTION,
    StateStatus.BOUND_EXCEEDED: OutcomeKind.BOUND_EXCEEDED,
    StateStatus.ABORTED: OutcomeKind.ABORT,
    StateStatus.MEMORY_ERROR: OutcomeKind.MEMORY_ERROR,
    StateStatus.ERROR: OutcomeKind.ERROR,
}


@dataclass(slots=True, frozen=True, eq=False)
class Outcome:
    kind: OutcomeKind
    function: str
    path_condition: tuple[z3.BoolRef, ...]
    return_value: SymbolicValue | None = None
    exception_type: str | None = None
    payload: SymbolicValue | None = None
    bound: BoundHit | None = None
    message: str | None = None
    trace: tuple[str, ...] = ()
    steps: int = 0
    watch_events: tuple[WatchEvent, ...] = ()

    @classmethod
    def from_state(cls, state: ExecutionState, function: str) -> Outcome:
        exception = state.exception
        return cls(
            kind=_KIND_BY_STATUS[state.status],
            function=function,
            path_condition=state.path_condition,
            return_value=state.return_value,
            exception_type=exception.type if exception else None,
            payload=exception.payload if exception else None,
            bound=state.bound,
            message=state.message,
            trace=tuple(state.trace),
            steps=state.steps,
            watch_events=tuple(state.watch_events),
        )

    @property
    def condition(self) -> z3.BoolRef:
        if not self.path_condition:
            return z3.BoolVal(True)
        return z3.simplify(z3.And(*self.path_condition))

    def describe(self) -> str:
        if self.kind == OutcomeKind.RETURN:
            return "return void" if self.return_value is None else f"return {_render(self.return_value)}"
        if self.kind == OutcomeKind.UNCAUGHT_EXCEPTION:
            payload = f" {_render(self.payload)}" if self.payload is not None else ""
            return f"uncaught {self.exception_type}{payload}"
        if self.kind == OutcomeKind.BOUND_EXCEEDED:
            return f"bound exceeded: {self.bound}"
        return f"{self.kind.value}: {self.message}"


def _render(value: SymbolicValue) -> str:
    concrete = value.as_int()
    return str(concrete) if concrete is not None else str(z3.simplify(value.expr))


@dataclass(slots=True)
class ExplorationStats:
    steps: int = 0
    forks: int = 0
    pruned: int = 0
    solver_queries: int = 0
    solver_unknown: int = 0
    dropped: int = 0


@dataclass(slots=True)
class ExplorationResult:
    function: str
    outcomes: list[Outcome] = field(default_factory=list)
    stats: ExplorationStats = field(default_factory=ExplorationStats)
    stop_reason: StopReason = StopReason.COMPLETED
    arguments: dict[str, SymbolicValue] = field(default_factory=dict)

    @property
    def partial(self) -> bool:
        return self.stop_reason not in (StopReason.COMPLETED, StopReason.TARGET_FOUND)

    def by_kind(self, kind: OutcomeKind) -> list[Outcome]:
        return [outcome for outcome in self.outcomes if outcome.kind == kind]

    @property
    def returns(self) -> list[Outcome]:
        return self.by_kind(OutcomeKind.RETURN)

    @property
    def bound_exceeded(self) -> bool:
        return any(outcome.kind == OutcomeKind.BOUND_EXCEEDED for outcome in self.outcomes)

    def argument_terms(self) -> dict[str, tuple[z3.BitVecRef, bool]]:
        return {name: (value.expr, _signed(value.type)) for name, value in self.arguments.items()}


def _signed(ty: Type) -> bool:
    return isinstance(ty, IntType) and ty.signed
