"""Symbolic execution engine."""

from __future__ import annotations

from .explorer import Buffer, PathExplorer, Query, Symbolic
from .hooks import CallContext
from .outcomes import ExplorationResult, Outcome, OutcomeKind, StopReason
from .queries import (
    Abort,
    BoundExceeded,
    Failure,
    Return,
    ReturnVoid,
    Throw,
    find_zero_of_func,
    possible_return_values,
)
from .solver import ConstraintSolver, PossibleSolutions
from .values import SymbolicValue

__all__ = [
    "Abort",
    "BoundExceeded",
    "Buffer",
    "CallContext",
    "ConstraintSolver",
    "ExplorationResult",
    "Failure",
    "Outcome",
    "OutcomeKind",
    "PathExplorer",
    "PossibleSolutions",
    "Query",
    "Return",
    "ReturnVoid",
    "StopReason",
    "Symbolic",
    "SymbolicValue",
    "Throw",
    "find_zero_of_func",
    "possible_return_values",
]
