"""Heap, stack and libc models exercised through whole functions."""
import pytest

from ir_sym.config import Config, OutOfBoundsPolicy
from ir_sym.engine.explorer import PathExplorer, Query
from ir_sym.engine.outcomes import OutcomeKind
from ir_sym.engine.queries import Abort, Return, find_zero_of_func, possible_return_values


@pytest.fixture
def memory(link):
    return link("memory")


def _single(project, name, args=(), config=None):
    result = PathExplorer(project, config).explore(Query(name, list(args)))
    assert len(result.outcomes) == 1
    return result.outcomes[0]


def test_heap_roundtrip(memory):
    assert find_zero_of_func(memory, "heap_roundtrip") == (3,)


@pytest.mark.parametrize(
    ("name", "fragment"),
    [
        ("use_after_free", "freed"),
        ("double_free", "freed"),
        ("null_deref", "null pointer"),
        ("dangling_stack", "dangling pointer"),
    ],
)
def test_memory_errors(memory, name, fragment):
    outcome = _single(memory, name)
    assert outcome.kind == OutcomeKind.MEMORY_ERROR
    assert fragment in outcome.message


def test_out_of_bounds_is_reported(memory):
    result = PathExplorer(memory).explore(Query("oob_index"))
    assert [o.return_value.as_int() for o in result.returns] == [0]
    (error,) = result.by_kind(OutcomeKind.MEMORY_ERROR)
    assert "out-of-bounds" in error.message
    assert _single(memory, "oob_index", [9]).kind == OutcomeKind.MEMORY_ERROR


def test_out_of_bounds_symbolic_policy(memory):
    config = Config(out_of_bounds=OutOfBoundsPolicy.SYMBOLIC)
    result = PathExplorer(memory, config).explore(Query("oob_index"))
    assert [o.kind for o in result.outcomes] == [OutcomeKind.RETURN]
    outcome = _single(memory, "oob_index", [9], config)
    assert outcome.kind == OutcomeKind.RETURN
    assert outcome.return_value.as_int() is None


def test_uninitialized_memory_is_unconstrained(memory):
    outcome = _single(memory, "uninitialized_read")
    assert outcome.kind == OutcomeKind.RETURN
    assert outcome.return_value.as_int() is None


def test_calloc_is_zeroed(memory):
    assert possible_return_values(memory, "calloc_is_zeroed") == {Return(0)}


def test_memcpy_and_memset(memory):
    assert find_zero_of_func(memory, "memcpy_copy") == (3,)
    assert possible_return_values(memory, "memset_fill") == {Return(0x01010101)}


def test_realloc_keeps_contents(memory):
    assert possible_return_values(memory, "realloc_keeps_contents", [5]) == {Return(5)}


def test_abort(memory):
    assert possible_return_values(memory, "abort_path") == {Return(0), Abort()}
    outcome = _single(memory, "abort_path", [42])
    assert outcome.kind == OutcomeKind.ABORT
    assert outcome.message == "abort() called"
