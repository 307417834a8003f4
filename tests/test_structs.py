"""Aggregate layout seen through alloca, gep, load and store."""
import pytest

from ir_sym.engine.queries import Return, find_zero_of_func, possible_return_values


@pytest.fixture
def structs(link):
    return link("struct")


@pytest.mark.parametrize(
    ("name", "zero"),
    [
        ("one_int", 3),
        ("two_ints_first", 3),
        ("two_ints_second", 3),
        ("two_ints_both", 3),
        ("zero_initialize", 12),
        ("mismatched_second", 3),
        ("mismatched_third", 3),
        ("nested_second", 3),
        ("with_array", 3),
    ],
)
def test_struct_zeroes(structs, name, zero):
    assert find_zero_of_func(structs, name) == (zero,)


@pytest.mark.parametrize("name", ["structptr", "three_ints", "mismatched_all", "nested_all"])
def test_zero_found_is_a_real_zero(structs, name):
    zero = find_zero_of_func(structs, name)
    assert zero is not None
    assert possible_return_values(structs, name, list(zero)) == {Return(0)}


def test_structptr_zero_wraps(structs):
    (x,) = find_zero_of_func(structs, "structptr")
    assert (2 * x - 6) % 2**32 == 0


def test_unsigned_field_wraps(structs):
    assert possible_return_values(structs, "mismatched_third", [1]) == {Return(254)}


def test_neighbouring_fields_do_not_alias(structs):
    assert possible_return_values(structs, "nested_second", [103]) == {Return(100)}
    assert possible_return_values(structs, "with_array", [10]) == {Return(7)}


def test_three_ints_overwrites_in_order(structs):
    x, _ = find_zero_of_func(structs, "three_ints")
    assert x == 3
    assert possible_return_values(structs, "three_ints", [10, 4]) == {Return(7)}


def test_mismatched_all_keeps_field_widths(structs):
    x, y = find_zero_of_func(structs, "mismatched_all")
    assert ((3 - 2 * x) % 256 + 2 * y + 1 + 254) % 2**32 == 0
    assert possible_return_values(structs, "mismatched_all", [0, 0]) == {Return(258)}
    assert possible_return_values(structs, "mismatched_all", [1, 5]) == {Return(266)}


def test_nested_all_inner_struct_is_separate(structs):
    x, _ = find_zero_of_func(structs, "nested_all")
    assert x == 250
    assert possible_return_values(structs, "nested_all", [10, 77]) == {Return(16)}


def test_pointers_into_two_structs_do_not_alias(structs):
    assert possible_return_values(structs, "ptrs", [5]) == {Return(21)}
    assert possible_return_values(structs, "ptrs", [-3]) == {Return(5)}
    assert find_zero_of_func(structs, "ptrs") is None
