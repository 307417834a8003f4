"""Tests for IR type parsing and ABI layout."""
import pytest

from ir_sym.errors import LayoutError
from ir_sym.ir.parser import parse_module
from ir_sym.ir.types import I8, I32, PTR, ArrayType, IntType, StructType, VectorType, parse_type


def test_integer_types_and_signedness():
    assert parse_type("i32") == I32
    assert parse_type("u8") == IntType(8, signed=False)
    assert parse_type("i8").signed
    assert not parse_type("i1").signed
    assert parse_type("i64").size == 8


def test_array_and_vector_layout():
    arr = parse_type("[10 x i32]")
    assert isinstance(arr, ArrayType)
    assert arr.size == 40
    assert arr.align == 4

    vec = parse_type("<4 x u32>")
    assert isinstance(vec, VectorType)
    assert vec.size == 16
    assert vec.bits == 128


def test_struct_padding_follows_natural_alignment():
    mismatched = StructType("Mismatched", (IntType(8, False), IntType(32, False), IntType(8, False)))
    assert mismatched.offsets == (0, 4, 8)
    assert mismatched.size == 12
    assert mismatched.align == 4

    with_pointer = StructType(None, (I32, PTR))
    assert with_pointer.field_offset(1) == 8
    assert with_pointer.size == 16


def test_i128_is_sixteen_byte_aligned():
    wide = parse_type("i128")
    assert wide.size == 16
    assert wide.align == 16

    padded = StructType(None, (I8, wide))
    assert padded.field_offset(1) == 16
    assert padded.size == 32


def test_packed_struct_has_no_padding():
    packed = StructType("Packed", (I8, I32, I8), packed=True)
    assert packed.offsets == (0, 1, 5)
    assert packed.size == 6


def test_literal_struct_parses_nested_members():
    ty = parse_type("{i8, [3 x i16], ptr}")
    assert isinstance(ty, StructType)
    assert ty.offsets == (0, 2, 8)
    assert ty.size == 16


def test_named_structs_resolve_within_module():
    module = parse_module(
        '{"name": "m", "structs": {"Inner": ["i32", "i32"], "Outer": ["i8", "%Inner"]}, "functions": []}'
    )
    outer = module.structs["Outer"]
    assert outer.field_offset(1) == 4
    assert outer.size == 12


def test_zero_length_array_is_a_layout_error():
    with pytest.raises(LayoutError):
        parse_type("[0 x i32]")


def test_invalid_field_index_is_a_layout_error():
    with pytest.raises(LayoutError):
        StructType(None, (I32,)).field_offset(3)


def test_struct_containing_itself_is_rejected():
    with pytest.raises(LayoutError, match="contains itself"):
        parse_module('{"name": "m", "structs": {"Loop": ["i32", "%Loop"]}, "functions": []}')


def test_unknown_struct_is_rejected():
    with pytest.raises(LayoutError, match="unknown struct"):
        parse_module('{"name": "m", "structs": {"A": ["%Missing"]}, "functions": []}')
