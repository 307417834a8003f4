"""Thin wrapper over ``z3.Solver`` used for feasibility checks and models."""
from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import Generic, TypeVar

import z3

from ..config import UnknownPolicy

__all__ = ["ConstraintSolver", "PossibleSolutions", "SolverResult"]

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SolverResult(StrEnum):
    SAT = "sat"
    UNSAT = "unsat"
    UNKNOWN = "unknown"


@dataclass(slots=True, frozen=True, eq=False)
class PossibleSolutions(Generic[T]):
    """Solutions found for an expression.

    ``exact`` is ``False`` when the listed values are only a lower bound, either
    because there were more than requested or the search was inconclusive.
    """

    values: frozenset[T]
    exact: bool = True

    def __iter__(self) -> Iterator[T]:
        return iter(self.values)

    def __len__(self) -> int:
        return len(self.values)

    def __contains__(self, item: object) -> bool:
        return item in self.values

    def __eq__(self, other: object) -> bool:
        if isinstance(other, PossibleSolutions):
            return self.values == other.values and self.exact == other.exact
        if isinstance(other, set | frozenset):
            return self.values == other
        return NotImplemented

    __hash__ = None


class ConstraintSolver:
    def __init__(self, timeout_ms: int = 5000) -> None:
        self.timeout_ms = timeout_ms
        self.queries = 0
        self.unknown = 0

    def _solver(self, constraints: Sequence[z3.BoolRef]) -> z3.Solver:
        solver = z3.Solver()
        solver.set("timeout", self.timeout_ms)
        solver.add(*constraints)
        return solver

    def _check(self, solver: z3.Solver) -> SolverResult:
        self.queries += 1
        answer = solver.check()
        if answer == z3.sat:
            return SolverResult.SAT
        if answer == z3.unsat:
            return SolverResult.UNSAT
        self.unknown += 1
        logger.warning("Solver returned unknown: %s", solver.reason_unknown())
        return SolverResult.UNKNOWN

    def check(self, constraints: Sequence[z3.BoolRef]) -> SolverResult:
        return self._check(self._solver(constraints))

    def is_feasible(
        self,
        constraints: Sequence[z3.BoolRef],
        policy: UnknownPolicy = UnknownPolicy.ASSUME_FEASIBLE,
    ) -> bool:
        result = self.check(constraints)
        if result == SolverResult.UNKNOWN:
            return policy == UnknownPolicy.ASSUME_FEASIBLE
        return result == SolverResult.SAT

    def model(self, constraints: Sequence[z3.BoolRef]) -> z3.ModelRef | None:
        solver = self._solver(constraints)
        if self._check(solver) != SolverResult.SAT:
            return None
        return solver.model()

    def example(
        self,
        constraints: Sequence[z3.BoolRef],
        terms: Mapping[str, tuple[z3.BitVecRef, bool]],
    ) -> dict[str, int] | None:
        """Concrete values for ``terms`` (name -> (term, signed)) satisfying ``constraints``."""
        model = self.model(constraints)
        if model is None:
            return None
        values: dict[str, int] = {}
        for name, (term, signed) in terms.items():
            evaluated = model.eval(term, model_completion=True)
            values[name] = evaluated.as_signed_long() if signed else evaluated.as_long()
        return values

    def possible_solutions(
        self,
        expr: z3.BitVecRef,
        constraints: Sequence[z3.BoolRef],
        n: int,
        signed: bool = False,
    ) -> PossibleSolutions[int]:
        """Up to ``n`` distinct values of ``expr``; inexact if more exist."""
        solver = self._solver(constraints)
        found: set[int] = set()
        while len(found) <= n:
            result = self._check(solver)
            if result == SolverResult.UNSAT:
                return PossibleSolutions(frozenset(found), exact=True)
            if result == SolverResult.UNKNOWN:
                return PossibleSolutions(frozenset(found), exact=False)
            raw = solver.model().eval(expr, model_completion=True)
            found.add(raw.as_signed_long() if signed else raw.as_long())
            solver.add(expr != raw)
        return PossibleSolutions(frozenset(found), exact=False)
