"""Exploration control: limits, cancellation, queries and argument specs."""
import json

import pytest

from ir_sym.config import Config, UnknownPolicy
from ir_sym.engine.explorer import Buffer, PathExplorer, Query, Symbolic
from ir_sym.engine.outcomes import OutcomeKind, StopReason
from ir_sym.engine.solver import ConstraintSolver, SolverResult
from ir_sym.errors import QueryError
from ir_sym.link.linker import Project


@pytest.fixture
def loops(link):
    return link("loop")


@pytest.fixture
def basic(link):
    return link("basic")


def test_completed_run_is_not_partial(basic):
    result = PathExplorer(basic).explore(Query("conditional_true"))
    assert result.stop_reason == StopReason.COMPLETED
    assert not result.partial
    assert result.stats.forks == 1
    assert result.stats.solver_queries > 0


def test_max_paths_marks_result_partial(loops):
    result = PathExplorer(loops, Config(max_paths=3)).explore(Query("while_loop"))
    assert len(result.outcomes) == 3
    assert result.stop_reason == StopReason.MAX_PATHS
    assert result.partial
    assert result.stats.dropped > 0


def test_cancel_keeps_outcomes_found_so_far(loops):
    explorer = PathExplorer(loops)
    outcomes = explorer.iter_outcomes(Query("while_loop"))
    first = next(outcomes)
    explorer.cancel()
    assert list(outcomes) == []
    assert first.kind in (OutcomeKind.RETURN, OutcomeKind.BOUND_EXCEEDED)


def test_explorer_is_reusable_after_cancel(loops):
    explorer = PathExplorer(loops, Config(loop_bound=2))
    explorer.cancel()
    result = explorer.explore(Query("while_loop"))
    assert result.stop_reason == StopReason.COMPLETED
    assert len(result.outcomes) == 4


def test_time_limit(loops):
    result = PathExplorer(loops, Config(time_limit=1e-9)).explore(Query("while_loop"))
    assert result.stop_reason == StopReason.TIME_LIMIT
    assert result.partial


def test_target_return_stops_early(basic):
    result = PathExplorer(basic).explore(Query("has_switch", target_return=-1))
    assert result.stop_reason == StopReason.TARGET_FOUND
    assert result.outcomes[-1].return_value.as_int() == -1
    assert len(result.outcomes) == 1


def test_constraints_builder(basic):
    explorer = PathExplorer(basic)
    result = explorer.explore(Query("one_arg", constraints=lambda args: [args["a"].expr == 10]))
    (outcome,) = result.outcomes
    assert explorer.solver.example(outcome.path_condition, result.argument_terms()) == {"a": 10}


def test_infeasible_constraints_prune_everything(basic):
    result = PathExplorer(basic).explore(
        Query("one_arg", constraints=lambda args: [args["a"].expr == 1, args["a"].expr == 2])
    )
    assert result.outcomes == []
    assert result.stats.pruned == 1


def test_argument_count_must_match(basic):
    with pytest.raises(QueryError, match="takes 2 argument"):
        PathExplorer(basic).explore(Query("two_args", [1]))


def test_unknown_function(basic):
    with pytest.raises(QueryError):
        PathExplorer(basic).explore(Query("missing"))


@pytest.mark.parametrize("spec", [Buffer(4), "seven", True, 1.5])
def test_invalid_argument_specs(basic, spec):
    with pytest.raises(QueryError):
        PathExplorer(basic).explore(Query("one_arg", [spec]))


def test_symbolic_spec_and_default_are_equivalent(basic):
    explicit = PathExplorer(basic).explore(Query("conditional_true", [Symbolic(), Symbolic()]))
    default = PathExplorer(basic).explore(Query("conditional_true"))
    assert len(explicit.outcomes) == len(default.outcomes) == 2


def test_pointer_arguments_get_entry_buffers(link):
    project = link("throwcatch")
    result = PathExplorer(project).explore(Query("throw_uncaught_void", [Buffer(4, zeroed=True)]))
    (outcome,) = result.outcomes
    assert outcome.kind == OutcomeKind.RETURN
    small = PathExplorer(project).explore(Query("throw_uncaught_void", [Buffer(2)]))
    assert [o.kind for o in small.outcomes] == [OutcomeKind.MEMORY_ERROR]


def test_malformed_code_becomes_an_error_outcome(tmp_path):
    module = {
        "name": "broken.c",
        "functions": [
            {"name": "broken", "return": "i32",
             "blocks": [{"label": "entry", "instructions": [{"op": "ret", "args": ["%missing"]}]}]}
        ],
    }
    path = tmp_path / "broken.json"
    path.write_text(json.dumps(module))
    result = PathExplorer(Project.from_paths([path])).explore(Query("broken"))
    (outcome,) = result.outcomes
    assert outcome.kind == OutcomeKind.ERROR
    assert "undefined register %missing" in outcome.message


class _UndecidedSolver(ConstraintSolver):
    """Answers ``unknown`` to every query, as a timed-out solver would."""

    def _check(self, solver):
        self.queries += 1
        self.unknown += 1
        return SolverResult.UNKNOWN


def _undecided_explorer(project, policy: UnknownPolicy) -> PathExplorer:
    explorer = PathExplorer(project, Config(unknown_policy=policy))
    explorer.solver = _UndecidedSolver()
    return explorer


def test_unknown_answers_keep_paths_when_assuming_feasible(basic):
    result = _undecided_explorer(basic, UnknownPolicy.ASSUME_FEASIBLE).explore(Query("conditional_true"))
    assert len(result.returns) == 2
    assert result.stats.pruned == 0
    assert result.stats.solver_unknown == 2


def test_unknown_answers_drop_paths_under_prune(basic):
    result = _undecided_explorer(basic, UnknownPolicy.PRUNE).explore(Query("conditional_true"))
    assert result.outcomes == []
    assert result.stats.pruned == 2
    assert result.stats.solver_unknown == 2


@pytest.mark.parametrize(
    ("policy", "stop_reason"),
    [(UnknownPolicy.ASSUME_FEASIBLE, StopReason.TARGET_FOUND), (UnknownPolicy.PRUNE, StopReason.COMPLETED)],
)
def test_target_check_follows_unknown_policy(basic, policy, stop_reason):
    result = _undecided_explorer(basic, policy).explore(Query("one_arg", target_return=0))
    assert len(result.outcomes) == 1
    assert result.stop_reason == stop_reason
