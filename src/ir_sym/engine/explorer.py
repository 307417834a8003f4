"""Path explorer: the work queue that drives the interpreter to terminal states."""
from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable, Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import z3

from ..config import Config, Strategy
from ..errors import QueryError
from ..ir.types import PointerType, Type
from .interpreter import Interpreter
from .memory import Memory, ObjectKind
from .outcomes import ExplorationResult, ExplorationStats, Outcome, OutcomeKind, StopReason
from .solver import ConstraintSolver
from .state import ExecutionState, Frame, WatchEvent
from .values import SymbolicValue, fresh

if TYPE_CHECKING:
    from ..link.linker import Project

__all__ = ["Buffer", "PathExplorer", "Query", "Symbolic"]

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class Symbolic:
    """An unconstrained argument; for pointers, a pointer to any object."""


@dataclass(slots=True, frozen=True)
class Buffer:
    """A pointer argument to a fresh object of ``size`` bytes."""

    size: int
    zeroed: bool = False


ArgSpec = int | Symbolic | Buffer | None


@dataclass(slots=True)
class Query:
    function: str
    args: Sequence[ArgSpec] = ()
    constraints: Callable[[dict[str, SymbolicValue]], Iterable[z3.BoolRef]] | None = None
    target_return: int | None = None


@dataclass(slots=True)
class _Run:
    query: Query
    arguments: dict[str, SymbolicValue] = field(default_factory=dict)
    stats: ExplorationStats = field(default_factory=ExplorationStats)
    stop_reason: StopReason = StopReason.COMPLETED


class PathExplorer:
    """Bounded exploration of every feasible path through one entry function.

    States are stepped one at a time on the calling thread. Successors share
    only immutable IR and immutable memory objects, so no state can observe
    another's updates.
    """

    def __init__(self, project: Project, config: Config | None = None) -> None:
        self.project = project
        self.config = config or Config()
        self.interpreter = Interpreter(project, self.config)
        self.solver = ConstraintSolver(self.config.solver_timeout_ms)
        self._cancelled = False
        self._run: _Run | None = None

    def cancel(self) -> None:
        """Stop at the next scheduling point; outcomes found so far are kept."""
        self._cancelled = True

    def initial_state(self, query: Query) -> tuple[ExecutionState, dict[str, SymbolicValue]]:
        function = self.project.function(query.function)
        specs = list(query.args) or [None] * len(function.params)
        if len(specs) != len(function.params):
            raise QueryError(
                f"'{function.name}' takes {len(function.params)} argument(s), query gives {len(specs)}"
            )

        memory = self.project.initial_memory()
        arguments: dict[str, SymbolicValue] = {}
        for param, spec in zip(function.params, specs):
            arguments[param.name] = self._argument(memory, function.name, param.name, param.type, spec)

        state = ExecutionState(frames=[Frame(function, function.entry, registers=dict(arguments))], memory=memory)
        state.trace.append(f"{function.name}:{function.entry}")
        if query.constraints is not None:
            for condition in query.constraints(arguments):
                state.constrain(condition)
        return state, arguments

    def _argument(self, memory: Memory, function: str, name: str, ty: Type, spec: ArgSpec) -> SymbolicValue:
        pointer = isinstance(ty, PointerType)
        if isinstance(spec, bool) or (spec is not None and not isinstance(spec, int | Symbolic | Buffer)):
            raise QueryError(f"Invalid argument spec for '{name}': {spec!r}")
        if isinstance(spec, int):
            return SymbolicValue.constant(spec, ty)
        if isinstance(spec, Symbolic):
            return fresh(name, ty)
        if spec is None and not pointer:
            return fresh(name, ty)
        if not pointer:
            raise QueryError(f"Buffer given for non-pointer parameter '{name}' of type {ty}")
        size, zeroed = (spec.size, spec.zeroed) if isinstance(spec, Buffer) else (self.config.entry_buffer_size, False)
        obj = memory.allocate(size, name=f"{function}.{name}", kind=ObjectKind.HEAP, zeroed=zeroed)
        return memory.address_of(obj.id)

    def _feasible(self, state: ExecutionState) -> bool:
        if len(state.path_condition) <= state.checked:
            return True
        feasible = self.solver.is_feasible(state.path_condition, self.config.unknown_policy)
        state.checked = len(state.path_condition)
        return feasible

    def _watch_hit(self, state: ExecutionState, event: WatchEvent) -> bool:
        if z3.is_true(event.condition):
            return True
        return self.solver.is_feasible([*state.path_condition, event.condition], self.config.unknown_policy)

    def _hits_target(self, outcome: Outcome, target: int) -> bool:
        value = outcome.return_value
        if outcome.kind != OutcomeKind.RETURN or value is None:
            return False
        goal = value.expr == z3.BitVecVal(target % (1 << value.expr.size()), value.expr.size())
        return self.solver.is_feasible([*outcome.path_condition, goal], self.config.unknown_policy)

    def iter_outcomes(self, query: Query) -> Iterator[Outcome]:
        """Yield terminal outcomes as they are discovered."""
        self._cancelled = False
        initial, arguments = self.initial_state(query)
        run = self._run = _Run(query, arguments)
        queries_before, unknown_before = self.solver.queries, self.solver.unknown
        deadline = time.monotonic() + self.config.time_limit if self.config.time_limit else None
        queue: deque[ExecutionState] = deque([initial])
        found = 0
        logger.debug("Exploring %s with strategy %s", query.function, self.config.strategy)

        try:
            while queue:
                if self._cancelled:
                    run.stop_reason = StopReason.CANCELLED
                    break
                if deadline is not None and time.monotonic() > deadline:
                    run.stop_reason = StopReason.TIME_LIMIT
                    break

                state = queue.pop() if self.config.strategy == Strategy.DFS else queue.popleft()
                if not self._feasible(state):
                    run.stats.pruned += 1
                    continue

                if state.is_terminal:
                    state.watch_events = [event for event in state.watch_events if self._watch_hit(state, event)]
                    outcome = Outcome.from_state(state, query.function)
                    if outcome.kind == OutcomeKind.BOUND_EXCEEDED:
                        logger.debug("Path truncated: %s", outcome.bound)
                    found += 1
                    yield outcome
                    if query.target_return is not None and self._hits_target(outcome, query.target_return):
                        run.stop_reason = StopReason.TARGET_FOUND
                        break
                    if found >= self.config.max_paths and queue:
                        run.stop_reason = StopReason.MAX_PATHS
                        break
                    continue

                successors = self.interpreter.step(state)
                run.stats.steps += 1
                run.stats.forks += max(len(successors) - 1, 0)
                if self.config.strategy == Strategy.DFS:
                    queue.extend(reversed(successors))
                else:
                    queue.extend(successors)
        finally:
            run.stats.dropped = len(queue)
            run.stats.solver_queries = self.solver.queries - queries_before
            run.stats.solver_unknown = self.solver.unknown - unknown_before
            if run.stop_reason not in (StopReason.COMPLETED, StopReason.TARGET_FOUND):
                logger.warning(
                    "Exploration of %s stopped early (%s); %d state(s) left unexplored",
                    query.function,
                    run.stop_reason,
                    run.stats.dropped,
                )
            logger.info("Finished %s: %d outcome(s), %d step(s)", query.function, found, run.stats.steps)

    def explore(self, query: Query) -> ExplorationResult:
        outcomes = list(self.iter_outcomes(query))
        run = self._run
        return ExplorationResult(
            function=query.function,
            outcomes=outcomes,
            stats=run.stats,
            stop_reason=run.stop_reason,
            arguments=run.arguments,
        )
