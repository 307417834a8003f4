"""Global variables, constant globals and static initializers."""
import pytest

from ir_sym.engine.explorer import PathExplorer, Query
from ir_sym.engine.outcomes import OutcomeKind
from ir_sym.engine.queries import Return, possible_return_values


@pytest.fixture
def globals_project(link):
    return link("globals")


@pytest.fixture
def initialized(link):
    return link("globals_initialization_1", "globals_initialization_2")


def test_read_global(globals_project):
    assert possible_return_values(globals_project, "read_global") == {Return(3)}


@pytest.mark.parametrize("name", ["modify_global", "modify_global_with_call", "dont_confuse_globals"])
def test_stores_to_globals(globals_project, name):
    assert possible_return_values(globals_project, name, [17]) == {Return(17)}


def test_each_path_starts_from_fresh_globals(globals_project):
    explorer = PathExplorer(globals_project)
    explorer.explore(Query("dont_confuse_globals", [1]))
    assert possible_return_values(globals_project, "read_global") == {Return(3)}


def test_write_to_constant_global(globals_project):
    result = PathExplorer(globals_project).explore(Query("write_constant"))
    (outcome,) = result.outcomes
    assert outcome.kind == OutcomeKind.MEMORY_ERROR
    assert "read-only" in outcome.message


def test_initializers_across_modules(initialized):
    assert possible_return_values(initialized, "sum_constants") == {Return(1045)}
    assert possible_return_values(initialized, "read_through_pointers") == {Return(2048)}
