"""Tests for the JSON IR loader and control-flow analysis."""
import json

import pytest

from ir_sym.errors import LoadError, ParseError
from ir_sym.ir.module import (
    AddressOf,
    Aggregate,
    ConstBinary,
    GlobalRef,
    IntLiteral,
    NullLiteral,
    Register,
    ValueOf,
    ZeroInit,
)
from ir_sym.ir.opcodes import Opcode
from ir_sym.ir.parser import exception_tag, load_module, parse_module, parse_operand
from ir_sym.ir.types import I32, PTR

from conftest import fixture_path


def _module(*functions, **extra) -> str:
    return json.dumps({"name": "m", "functions": list(functions), **extra})


def _ret_zero(name: str = "f") -> dict:
    return {"name": name, "return": "i32", "blocks": [{"label": "entry", "instructions": [{"op": "ret", "args": [0]}]}]}


def test_operands():
    assert parse_operand("%x") == Register("x")
    assert parse_operand("@g") == GlobalRef("g")
    assert parse_operand(7) == IntLiteral(7)
    assert parse_operand("-0x10") == IntLiteral(-16)
    assert parse_operand("null") == NullLiteral()
    with pytest.raises(ParseError):
        parse_operand("x")


def test_exception_tags_are_canonical_type_names():
    assert exception_tag("int32_t") == "int32_t"
    assert exception_tag(" i32 ") == "i32"
    assert exception_tag("...") == "..."


def test_load_fixture_module():
    module = load_module(fixture_path("basic"))
    assert module.name == "basic.c"
    one_arg = module.functions["one_arg"]
    assert [p.name for p in one_arg.params] == ["a"]
    assert one_arg.params[0].type == I32
    assert one_arg.entry == "entry"
    sub = one_arg.blocks["entry"].instructions[0]
    assert sub.opcode == Opcode.SUB
    assert sub.dest == "r"
    assert sub.operands == (Register("a"), IntLiteral(3))


def test_load_module_defaults_name_to_file_stem(tmp_path):
    path = tmp_path / "unnamed.json"
    path.write_text(json.dumps({"functions": [_ret_zero()]}))
    assert load_module(path).name == "unnamed"


def test_switch_and_call_fields():
    module = load_module(fixture_path("basic"))
    switch = module.functions["has_switch"].blocks["entry"].instructions[-1]
    assert dict(switch.cases)[451] == "c451"
    assert switch.targets == ("dflt",)

    calls = load_module(fixture_path("call"))
    call = calls.functions["simple_caller"].blocks["entry"].instructions[0]
    assert call.callee == GlobalRef("simple_callee")
    assert call.type == I32


def test_global_initializer_expressions():
    module = load_module(fixture_path("globals_initialization_1"))
    assert module.globals["x"].external
    assert module.globals["b"].initializer == ValueOf("a", ())
    assert isinstance(module.globals["c"].initializer, ConstBinary)
    assert module.globals["ss0"].initializer == ZeroInit()
    swp1 = module.globals["swp1"].initializer
    assert isinstance(swp1, Aggregate)
    assert swp1.items[1] == AddressOf("swp0", (0, 0))
    assert module.globals["swp1"].constant


def test_try_handlers_and_throw_tag():
    module = load_module(fixture_path("throwcatch"))
    entry = module.functions["throw_uncaught_wrongtype"].blocks["entry"].instructions
    handler = entry[0].handlers[0]
    assert handler.type_name == "u8"
    assert handler.bind == "c"
    assert not handler.matches("i32")
    throw = module.functions["throw_uncaught"].blocks["raise"].instructions[0]
    assert throw.exception_type == "i32"


def test_invalid_json_is_a_parse_error():
    with pytest.raises(ParseError):
        parse_module("{not json")


def test_parse_error_is_a_value_error_and_load_error():
    with pytest.raises(ValueError):
        parse_module("[]")
    with pytest.raises(LoadError):
        parse_module("[]")


def test_unknown_opcode_is_rejected():
    bad = {"name": "f", "blocks": [{"label": "entry", "instructions": [{"op": "frobnicate"}]}]}
    with pytest.raises(ParseError, match="unknown opcode"):
        parse_module(_module(bad))


def test_block_must_end_in_terminator():
    bad = {
        "name": "f",
        "params": [{"name": "a", "type": "i32"}],
        "blocks": [{"label": "entry", "instructions": [{"op": "add", "dest": "b", "type": "i32", "args": ["%a", 1]}]}],
    }
    with pytest.raises(ParseError, match="terminator"):
        parse_module(_module(bad))


def test_branch_to_unknown_block_is_rejected():
    bad = {"name": "f", "blocks": [{"label": "entry", "instructions": [{"op": "br", "target": "nowhere"}]}]}
    with pytest.raises(ParseError, match="unknown block"):
        parse_module(_module(bad))


def test_operand_count_is_checked():
    bad = {
        "name": "f",
        "blocks": [{"label": "entry", "instructions": [
            {"op": "add", "dest": "x", "type": "i32", "args": [1]},
            {"op": "ret"},
        ]}],
    }
    with pytest.raises(ParseError, match="takes 2 operands"):
        parse_module(_module(bad))


def test_duplicate_function_in_module_is_rejected():
    with pytest.raises(ParseError, match="defined twice"):
        parse_module(_module(_ret_zero(), _ret_zero()))


def test_external_global_cannot_have_initializer():
    payload = _module(globals=[{"name": "g", "type": "i32", "external": True, "init": 1}])
    with pytest.raises(ParseError):
        parse_module(payload)


def test_back_edges_and_loop_headers():
    module = load_module(fixture_path("loop"))
    while_loop = module.functions["while_loop"]
    assert while_loop.back_edges == frozenset({("body", "header")})
    assert while_loop.loop_headers == frozenset({"header"})

    nested = module.functions["nested_loops"]
    assert nested.back_edges == frozenset({("inner_body", "inner"), ("outer_latch", "outer")})


def test_straight_line_function_has_no_loops():
    module = load_module(fixture_path("basic"))
    assert module.functions["conditional_nozero"].back_edges == frozenset()


def test_pointer_parameter_type():
    module = load_module(fixture_path("functionptr"))
    assert module.functions["calls_fptr"].params[0].type == PTR
