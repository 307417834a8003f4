"""Convenience queries built on the explorer and solver."""
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

import z3

from ..config import Config
from ..ir.types import IntType
from .explorer import ArgSpec, PathExplorer, Query
from .outcomes import OutcomeKind
from .solver import PossibleSolutions
from .values import SymbolicValue

if TYPE_CHECKING:
    from ..link.linker import Project

__all__ = [
    "Abort",
    "BoundExceeded",
    "Failure",
    "Return",
    "ReturnValue",
    "ReturnVoid",
    "Throw",
    "find_zero_of_func",
    "possible_return_values",
]


@dataclass(slots=True, frozen=True)
class Return:
    value: int


@dataclass(slots=True, frozen=True)
class ReturnVoid:
    pass


@dataclass(slots=True, frozen=True)
class Throw:
    value: int | None


@dataclass(slots=True, frozen=True)
class Abort:
    pass


@dataclass(slots=True, frozen=True)
class BoundExceeded:
    pass


@dataclass(slots=True, frozen=True)
class Failure:
    """A memory error or malformed instruction on some path."""

    kind: str
    message: str


ReturnValue = Return | ReturnVoid | Throw | Abort | BoundExceeded | Failure


def _signed(value: SymbolicValue) -> bool:
    return isinstance(value.type, IntType) and value.type.signed


def find_zero_of_func(project: Project, name: str, config: Config | None = None) -> tuple[int, ...] | None:
    """Arguments under which ``name`` returns zero, or ``None`` if no explored path can."""
    explorer = PathExplorer(project, config)
    result = explorer.explore(Query(name, target_return=0))
    terms = result.argument_terms()
    for outcome in reversed(result.outcomes):
        if outcome.kind != OutcomeKind.RETURN or outcome.return_value is None:
            continue
        zero = outcome.return_value.expr == z3.BitVecVal(0, outcome.return_value.expr.size())
        example = explorer.solver.example([*outcome.path_condition, zero], terms)
        if example is not None:
            return tuple(example[param.name] for param in project.function(name).params)
    return None


def possible_return_values(
    project: Project,
    name: str,
    args: Sequence[ArgSpec] = (),
    config: Config | None = None,
    n: int = 16,
) -> PossibleSolutions[ReturnValue]:
    """Every way ``name`` can finish, up to ``n`` distinct values."""
    explorer = PathExplorer(project, config)
    result = explorer.explore(Query(name, args))
    found: set[ReturnValue] = set()
    exact = not result.partial
    for outcome in result.outcomes:
        if outcome.kind == OutcomeKind.RETURN and outcome.return_value is None:
            found.add(ReturnVoid())
        elif outcome.kind == OutcomeKind.RETURN or (
            outcome.kind == OutcomeKind.UNCAUGHT_EXCEPTION and outcome.payload is not None
        ):
            value = outcome.return_value if outcome.kind == OutcomeKind.RETURN else outcome.payload
            wrap = Return if outcome.kind == OutcomeKind.RETURN else Throw
            solutions = explorer.solver.possible_solutions(
                value.expr, outcome.path_condition, n, signed=_signed(value)
            )
            exact = exact and solutions.exact
            found.update(wrap(v) for v in solutions)
        elif outcome.kind == OutcomeKind.UNCAUGHT_EXCEPTION:
            found.add(Throw(None))
        elif outcome.kind == OutcomeKind.ABORT:
            found.add(Abort())
        elif outcome.kind == OutcomeKind.BOUND_EXCEEDED:
            found.add(BoundExceeded())
        else:
            found.add(Failure(outcome.kind.value, outcome.message or ""))
        if len(found) > n:
            return PossibleSolutions(frozenset(found), exact=False)
    return PossibleSolutions(frozenset(found), exact=exact)
