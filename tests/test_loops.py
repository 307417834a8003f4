"""Loops, phis and the loop bound."""
import pytest

from ir_sym.config import Config, Strategy
from ir_sym.engine.explorer import PathExplorer, Query
from ir_sym.engine.outcomes import OutcomeKind
from ir_sym.engine.queries import BoundExceeded, Return, find_zero_of_func, possible_return_values


@pytest.fixture
def loops(link):
    return link("loop")


def test_while_loop(loops):
    assert find_zero_of_func(loops, "while_loop") == (3,)
    assert possible_return_values(loops, "while_loop", [5]) == {Return(2)}


def test_loop_bound_truncates_long_loops(loops):
    result = PathExplorer(loops).explore(Query("while_loop", [100]))
    (outcome,) = result.outcomes
    assert outcome.kind == OutcomeKind.BOUND_EXCEEDED
    assert outcome.bound.kind == "loop"
    assert outcome.bound.location == "while_loop:header"
    assert possible_return_values(loops, "while_loop", [100]) == {BoundExceeded()}


def test_raising_the_loop_bound(loops):
    config = Config(loop_bound=200)
    assert possible_return_values(loops, "while_loop", [100], config) == {Return(97)}


def test_symbolic_trip_count_forks_per_iteration(loops):
    result = PathExplorer(loops, Config(loop_bound=4)).explore(Query("while_loop"))
    assert len(result.returns) == 5
    assert len(result.by_kind(OutcomeKind.BOUND_EXCEEDED)) == 1


def test_phis_read_old_values(loops):
    assert possible_return_values(loops, "swap_phis", [0]) == {Return(12)}
    assert possible_return_values(loops, "swap_phis", [1]) == {Return(21)}
    assert possible_return_values(loops, "swap_phis", [2]) == {Return(12)}


def test_nested_loops_reset_inner_count(loops):
    assert possible_return_values(loops, "nested_loops", [4]) == {Return(0)}
    assert find_zero_of_func(loops, "nested_loops") == (4,)


def test_loop_over_array(loops):
    assert possible_return_values(loops, "loop_over_array", [7]) == {Return(0)}
    assert find_zero_of_func(loops, "loop_over_array") == (7,)


def test_symbolic_index_reports_out_of_bounds(loops):
    result = PathExplorer(loops).explore(Query("loop_over_array"))
    assert len(result.returns) == 1
    assert len(result.by_kind(OutcomeKind.MEMORY_ERROR)) == 1


def test_bfs_finds_the_same_outcomes(loops):
    dfs = PathExplorer(loops, Config(loop_bound=5)).explore(Query("swap_phis"))
    bfs = PathExplorer(loops, Config(loop_bound=5, strategy=Strategy.BFS)).explore(Query("swap_phis"))
    assert sorted(o.describe() for o in dfs.outcomes) == sorted(o.describe() for o in bfs.outcomes)
    assert len(dfs.outcomes) == 7


def test_fixed_count_loop_does_not_fork(loops):
    result = PathExplorer(loops).explore(Query("for_loop"))
    assert len(result.outcomes) == 1
    assert result.stats.forks == 0
    assert find_zero_of_func(loops, "for_loop") == (45,)


def test_fixed_count_loop_over_the_bound(loops):
    result = PathExplorer(loops, Config(loop_bound=9)).explore(Query("for_loop", [0]))
    assert [o.kind for o in result.outcomes] == [OutcomeKind.BOUND_EXCEEDED]
