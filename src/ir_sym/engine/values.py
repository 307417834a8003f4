"""Typed symbolic values and width/signedness-correct arithmetic."""
from __future__ import annotations

import itertools
from dataclasses import dataclass
from typing import Any

import z3

from ..errors import ExecutionError
from ..ir.opcodes import Opcode
from ..ir.types import I1, IntType, PointerType, Type, VectorType

__all__ = [
    "SymbolicValue",
    "binary_op",
    "bool_value",
    "cast",
    "compare",
    "concrete_int",
    "fresh",
    "from_lanes",
    "lanes",
    "reduce_lanes",
    "truth",
]

_fresh_ids = itertools.count()


@dataclass(slots=True, frozen=True, eq=False)
class SymbolicValue:
    expr: z3.BitVecRef
    type: Type

    @classmethod
    def constant(cls, value: int, ty: Type) -> SymbolicValue:
        return cls(z3.BitVecVal(value % (1 << ty.bits), ty.bits), ty)

    def is_concrete(self) -> bool:
        return z3.is_bv_value(self.expr)

    def as_int(self) -> int | None:
        """Concrete value interpreted per the value's signedness, else ``None``."""
        return concrete_int(self.expr, signed=_is_signed(self.type))

    def simplified(self) -> SymbolicValue:
        return SymbolicValue(z3.simplify(self.expr), self.type)

    def __str__(self) -> str:
        value = self.as_int()
        return f"{self.type} {value if value is not None else self.expr}"


def fresh(prefix: str, ty: Type) -> SymbolicValue:
    return SymbolicValue(z3.BitVec(f"{prefix}#{next(_fresh_ids)}", ty.bits), ty)


def concrete_int(expr: Any, signed: bool = False) -> int | None:
    expr = z3.simplify(expr)
    if not z3.is_bv_value(expr):
        return None
    return expr.as_signed_long() if signed else expr.as_long()


def _is_signed(ty: Type) -> bool:
    if isinstance(ty, IntType):
        return ty.signed
    if isinstance(ty, VectorType):
        return ty.element.signed
    return False


def bool_value(condition: z3.BoolRef) -> SymbolicValue:
    return SymbolicValue(z3.If(condition, z3.BitVecVal(1, 1), z3.BitVecVal(0, 1)), I1)


def truth(value: SymbolicValue) -> z3.BoolRef:
    return value.expr != z3.BitVecVal(0, value.expr.size())


def lanes(expr: z3.BitVecRef, ty: VectorType) -> list[z3.BitVecRef]:
    width = ty.element.width
    return [z3.Extract((i + 1) * width - 1, i * width, expr) for i in range(ty.count)]


def from_lanes(items: list[z3.BitVecRef]) -> z3.BitVecRef:
    if len(items) == 1:
        return items[0]
    return z3.Concat(*reversed(items))


def _scalar_binary(opcode: Opcode, left: z3.BitVecRef, right: z3.BitVecRef, signed: bool) -> z3.BitVecRef:
    if opcode == Opcode.ADD:
        return left + right
    if opcode == Opcode.SUB:
        return left - right
    if opcode == Opcode.MUL:
        return left * right
    if opcode == Opcode.DIV:
        return left / right if signed else z3.UDiv(left, right)
    if opcode == Opcode.REM:
        return z3.SRem(left, right) if signed else z3.URem(left, right)
    if opcode == Opcode.AND:
        return left & right
    if opcode == Opcode.OR:
        return left | right
    if opcode == Opcode.XOR:
        return left ^ right
    if opcode == Opcode.SHL:
        return left << right
    if opcode == Opcode.SHR:
        return left >> right if signed else z3.LShR(left, right)
    raise ExecutionError(f"'{opcode}' is not a binary operator")


def binary_op(opcode: Opcode, left: SymbolicValue, right: SymbolicValue, ty: Type) -> SymbolicValue:
    _check_width(left, ty)
    _check_width(right, ty)
    if isinstance(ty, VectorType):
        signed = ty.element.signed
        result = [
            _scalar_binary(opcode, lhs, rhs, signed)
            for lhs, rhs in zip(lanes(left.expr, ty), lanes(right.expr, ty), strict=True)
        ]
        return SymbolicValue(z3.simplify(from_lanes(result)), ty)
    return SymbolicValue(z3.simplify(_scalar_binary(opcode, left.expr, right.expr, _is_signed(ty))), ty)


def compare(predicate: str, left: SymbolicValue, right: SymbolicValue, ty: Type) -> z3.BoolRef:
    _check_width(left, ty)
    _check_width(right, ty)
    lhs, rhs = left.expr, right.expr
    if predicate == "eq":
        return lhs == rhs
    if predicate == "ne":
        return lhs != rhs
    if _is_signed(ty):
        table = {"lt": lhs < rhs, "le": lhs <= rhs, "gt": lhs > rhs, "ge": lhs >= rhs}
    else:
        table = {
            "lt": z3.ULT(lhs, rhs),
            "le": z3.ULE(lhs, rhs),
            "gt": z3.UGT(lhs, rhs),
            "ge": z3.UGE(lhs, rhs),
        }
    if predicate not in table:
        raise ExecutionError(f"Unknown comparison predicate '{predicate}'")
    return table[predicate]


def cast(value: SymbolicValue, source: Type, target: Type) -> SymbolicValue:
    """Truncate, sign- or zero-extend ``value`` from ``source`` to ``target``.

    Extension is chosen by the signedness of the *source* type, matching C's
    integer conversion rules; pointers are treated as unsigned 64-bit integers.
    """
    _check_width(value, source)
    from_bits, to_bits = source.bits, target.bits
    expr = value.expr
    if to_bits < from_bits:
        expr = z3.Extract(to_bits - 1, 0, expr)
    elif to_bits > from_bits:
        extend = z3.SignExt if _is_signed(source) and not isinstance(source, PointerType) else z3.ZeroExt
        expr = extend(to_bits - from_bits, expr)
    return SymbolicValue(z3.simplify(expr), target)


def reduce_lanes(operator: str, value: SymbolicValue, ty: VectorType) -> SymbolicValue:
    items = lanes(value.expr, ty)
    opcode = {
        "add": Opcode.ADD,
        "mul": Opcode.MUL,
        "and": Opcode.AND,
        "or": Opcode.OR,
        "xor": Opcode.XOR,
    }[operator]
    accumulator = items[0]
    for item in items[1:]:
        accumulator = _scalar_binary(opcode, accumulator, item, ty.element.signed)
    return SymbolicValue(z3.simplify(accumulator), ty.element)


def _check_width(value: SymbolicValue, ty: Type) -> None:
    if value.expr.size() != ty.bits:
        raise ExecutionError(f"Operand of width {value.expr.size()} used as {ty} ({ty.bits} bits)")
