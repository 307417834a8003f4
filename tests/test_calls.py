"""Direct calls, recursion bounds and cross-module linking."""
import pytest

from ir_sym.config import Config
from ir_sym.engine.explorer import PathExplorer, Query
from ir_sym.engine.outcomes import OutcomeKind
from ir_sym.engine.queries import BoundExceeded, Return, find_zero_of_func, possible_return_values


@pytest.fixture
def calls(link):
    return link("call")


@pytest.fixture
def crossmod(link):
    return link("crossmod", "call", "globals")


def test_simple_caller(calls):
    assert find_zero_of_func(calls, "simple_caller") == (3,)


def test_twice_caller(calls):
    (x,) = find_zero_of_func(calls, "twice_caller")
    assert (2 * x - 6) % 2**32 == 0
    assert possible_return_values(calls, "twice_caller", [x]) == {Return(0)}


def test_conditional_caller(calls):
    zero = find_zero_of_func(calls, "conditional_caller")
    assert zero is not None
    assert possible_return_values(calls, "conditional_caller", list(zero)) == {Return(0)}


def test_nested_caller(calls):
    x, y = find_zero_of_func(calls, "nested_caller")
    assert (x + y - 3) % 2**32 == 0


def test_recursive_simple(calls):
    assert possible_return_values(calls, "recursive_simple", [11]) == {Return(0)}
    assert possible_return_values(calls, "recursive_simple", [1]) == {Return(-144)}
    zero = find_zero_of_func(calls, "recursive_simple")
    assert zero is not None
    assert possible_return_values(calls, "recursive_simple", list(zero)) == {Return(0)}


def test_recursion_bound(calls):
    config = Config(recursion_bound=3)
    assert possible_return_values(calls, "recursive_simple", [1], config) == {BoundExceeded()}
    result = PathExplorer(calls, config).explore(Query("recursive_simple", [1]))
    (outcome,) = result.outcomes
    assert outcome.kind == OutcomeKind.BOUND_EXCEEDED
    assert outcome.bound.kind == "recursion"
    assert result.bound_exceeded


def test_unbounded_recursion_is_truncated(calls):
    assert possible_return_values(calls, "recursive_simple", [0]) == {BoundExceeded()}


def test_mutual_recursion(calls):
    assert possible_return_values(calls, "mutually_recursive_a", [3]) == {Return(0)}


def test_call_depth_limit(calls):
    config = Config(max_call_depth=2, recursion_bound=50)
    result = PathExplorer(calls, config).explore(Query("recursive_simple", [0]))
    (outcome,) = result.outcomes
    assert outcome.bound.kind == "call_depth"


def test_cross_module_calls(crossmod):
    assert find_zero_of_func(crossmod, "cross_module_simple_caller") == (3,)
    (x,) = find_zero_of_func(crossmod, "cross_module_twice_caller")
    assert (2 * x - 6) % 2**32 == 0
    x, y = find_zero_of_func(crossmod, "cross_module_nested_far_caller")
    assert (x + y - 3) % 2**32 == 0


def test_cross_module_globals(crossmod):
    assert possible_return_values(crossmod, "cross_module_read_global") == {Return(3)}
    assert possible_return_values(crossmod, "cross_module_read_global_via_call") == {Return(3)}
    assert possible_return_values(crossmod, "cross_module_modify_global_via_call", [7]) == {Return(7)}


def test_recursion_that_is_not_tail_recursive(calls):
    (x,) = find_zero_of_func(calls, "recursive_double")
    assert x in (-6, 2**31 - 6)
    assert possible_return_values(calls, "recursive_double", [x]) == {Return(0)}
    assert possible_return_values(calls, "recursive_double", [100]) == {Return(1701)}
    assert possible_return_values(calls, "recursive_double", [-2000]) == {Return(-1)}


def test_recursion_mixed_with_plain_calls(calls):
    assert find_zero_of_func(calls, "recursive_and_normal_caller") == (11,)
    assert possible_return_values(calls, "recursive_and_normal_caller", [20]) == {Return(40)}
    assert possible_return_values(calls, "recursive_and_normal_caller", [5]) == {Return(-48)}


def test_loop_inside_callee(calls):
    assert find_zero_of_func(calls, "caller_of_loop") == (3,)
    assert possible_return_values(calls, "callee_with_loop", [2, 0]) == {Return(-7)}


def test_call_inside_loop(calls):
    assert find_zero_of_func(calls, "caller_with_loop") == (3,)
    assert possible_return_values(calls, "caller_with_loop", [4]) == {Return(16)}
