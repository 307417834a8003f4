"""IR opcode definitions and operand metadata."""
from __future__ import annotations

from enum import StrEnum


class Opcode(StrEnum):
    ADD = "add"
    SUB = "sub"
    MUL = "mul"
    DIV = "div"
    REM = "rem"
    AND = "and"
    OR = "or"
    XOR = "xor"
    SHL = "shl"
    SHR = "shr"
    CMP = "cmp"
    CAST = "cast"
    SELECT = "select"
    PHI = "phi"
    ALLOCA = "alloca"
    LOAD = "load"
    STORE = "store"
    GEP = "gep"
    BR = "br"
    CONDBR = "condbr"
    SWITCH = "switch"
    CALL = "call"
    RET = "ret"
    UNREACHABLE = "unreachable"
    TRY = "try"
    ENDTRY = "endtry"
    THROW = "throw"
    RETHROW = "rethrow"
    ENDCATCH = "endcatch"
    EXTRACTELEMENT = "extractelement"
    INSERTELEMENT = "insertelement"
    SHUFFLE = "shuffle"
    REDUCE = "reduce"


BINARY_OPCODES: frozenset[Opcode] = frozenset(
    {
        Opcode.ADD,
        Opcode.SUB,
        Opcode.MUL,
        Opcode.DIV,
        Opcode.REM,
        Opcode.AND,
        Opcode.OR,
        Opcode.XOR,
        Opcode.SHL,
        Opcode.SHR,
    }
)

TERMINATOR_OPCODES: frozenset[Opcode] = frozenset(
    {
        Opcode.BR,
        Opcode.CONDBR,
        Opcode.SWITCH,
        Opcode.RET,
        Opcode.UNREACHABLE,
        Opcode.THROW,
        Opcode.RETHROW,
    }
)

COMPARISON_PREDICATES: frozenset[str] = frozenset({"eq", "ne", "lt", "le", "gt", "ge"})

REDUCTION_OPERATORS: frozenset[str] = frozenset({"add", "mul", "and", "or", "xor"})


# Exact operand counts; opcodes absent here take a variable number (call, gep, ret, phi).
OPERAND_COUNTS: dict[Opcode, int] = {
    **{op: 2 for op in BINARY_OPCODES},
    Opcode.CMP: 2,
    Opcode.CAST: 1,
    Opcode.SELECT: 3,
    Opcode.ALLOCA: 0,
    Opcode.LOAD: 1,
    Opcode.STORE: 2,
    Opcode.BR: 0,
    Opcode.CONDBR: 1,
    Opcode.SWITCH: 1,
    Opcode.UNREACHABLE: 0,
    Opcode.TRY: 0,
    Opcode.ENDTRY: 0,
    Opcode.THROW: 1,
    Opcode.RETHROW: 0,
    Opcode.ENDCATCH: 0,
    Opcode.EXTRACTELEMENT: 2,
    Opcode.INSERTELEMENT: 3,
    Opcode.SHUFFLE: 2,
    Opcode.REDUCE: 1,
}

# Opcodes whose result is written to ``dest``.
PRODUCES_VALUE: frozenset[Opcode] = frozenset(
    BINARY_OPCODES
    | {
        Opcode.CMP,
        Opcode.CAST,
        Opcode.SELECT,
        Opcode.PHI,
        Opcode.ALLOCA,
        Opcode.LOAD,
        Opcode.GEP,
        Opcode.EXTRACTELEMENT,
        Opcode.INSERTELEMENT,
        Opcode.SHUFFLE,
        Opcode.REDUCE,
    }
)
