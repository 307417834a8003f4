"""Evaluation of global initializer expressions into pre-allocated storage.

Storage for every global exists before the first initializer runs, so taking
the address of a global never depends on evaluation order. Only ``ref``
expressions (reading another global's *value*) impose an order; a cycle of
those is a load error.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING

from ..errors import InitializerCycleError, LayoutError, LinkError, UnresolvedSymbolError
from ..ir.module import AddressOf, Aggregate, ConstBinary, ConstExpr, ConstInt, ConstNull, GlobalVariable, ValueOf, ZeroInit
from ..ir.types import PTR, ArrayType, PointerType, StructType, Type, VectorType
from ..engine.memory import Memory, make_pointer
from ..engine.values import SymbolicValue, binary_op, cast

if TYPE_CHECKING:
    from .linker import Symbol

__all__ = ["element_offset", "evaluate_initializers", "initialization_order", "value_dependencies"]

logger = logging.getLogger(__name__)


def value_dependencies(expr: ConstExpr | None) -> set[str]:
    """Globals whose contents ``expr`` reads."""
    if isinstance(expr, ValueOf):
        return {expr.symbol}
    if isinstance(expr, Aggregate):
        return set().union(*(value_dependencies(item) for item in expr.items))
    if isinstance(expr, ConstBinary):
        return set().union(*(value_dependencies(arg) for arg in expr.args))
    return set()


def initialization_order(globals_: Mapping[str, GlobalVariable]) -> list[str]:
    """Topological order over value dependencies; raises on a value cycle."""
    order: list[str] = []
    done: set[str] = set()
    path: list[str] = []

    def visit(name: str) -> None:
        if name in done:
            return
        if name in path:
            raise InitializerCycleError([*path[path.index(name):], name])
        path.append(name)
        for dependency in sorted(value_dependencies(globals_[name].initializer)):
            if dependency not in globals_:
                raise UnresolvedSymbolError(dependency, globals_[name].module)
            visit(dependency)
        path.pop()
        done.add(name)
        order.append(name)

    for name in globals_:
        visit(name)
    return order


def element_offset(ty: Type, path: tuple[int, ...]) -> tuple[int, Type]:
    """Byte offset and type reached by a getelementptr-style constant index path."""
    if not path:
        return 0, ty
    offset = path[0] * ty.size
    current = ty
    for index in path[1:]:
        if isinstance(current, StructType):
            offset += current.field_offset(index)
            current = current.fields[index]
        elif isinstance(current, ArrayType | VectorType):
            if not 0 <= index < current.count:
                raise LayoutError(f"Index {index} out of range for {current}")
            offset += index * current.element.size
            current = current.element
        else:
            raise LayoutError(f"Cannot index into {current}")
    return offset, current


class _Evaluator:
    def __init__(self, globals_: Mapping[str, GlobalVariable], symbols: Mapping[str, Symbol], memory: Memory) -> None:
        self.globals = globals_
        self.symbols = symbols
        self.memory = memory

    def run(self) -> None:
        order = initialization_order(self.globals)
        logger.debug("Global initialization order: %s", ", ".join(order))
        for name in order:
            variable = self.globals[name]
            self.write(self.symbols[name].object_id, 0, variable.type, variable.initializer, name)

    def write(self, object_id: int, offset: int, ty: Type, expr: ConstExpr | None, where: str) -> None:
        if expr is None or isinstance(expr, ZeroInit):
            return
        if isinstance(expr, Aggregate):
            self._write_aggregate(object_id, offset, ty, expr, where)
            return
        if isinstance(expr, ValueOf) and not ty.is_scalar():
            source_id, source_offset, source_type = self._locate(expr)
            if source_type.size != ty.size:
                raise LayoutError(f"{where}: cannot initialize {ty} from {source_type} value of '{expr.symbol}'")
            self.memory.copy(object_id, offset, source_id, source_offset, ty.size)
            return
        self.memory.store(object_id, offset, self.scalar(expr, ty, where))

    def _write_aggregate(self, object_id: int, offset: int, ty: Type, expr: Aggregate, where: str) -> None:
        if isinstance(ty, StructType):
            members = list(zip(ty.offsets, ty.fields))
        elif isinstance(ty, ArrayType | VectorType):
            members = [(i * ty.element.size, ty.element) for i in range(ty.count)]
        else:
            raise LayoutError(f"{where}: aggregate initializer for non-aggregate type {ty}")
        if len(expr.items) > len(members):
            raise LayoutError(f"{where}: {len(expr.items)} initializers for {ty} with {len(members)} members")
        for item, (member_offset, member_type) in zip(expr.items, members):
            self.write(object_id, offset + member_offset, member_type, item, where)

    def scalar(self, expr: ConstExpr, ty: Type, where: str) -> SymbolicValue:
        if not ty.is_scalar():
            raise LayoutError(f"{where}: scalar initializer for aggregate type {ty}")
        if isinstance(expr, ConstInt):
            return SymbolicValue.constant(expr.value, ty)
        if isinstance(expr, ConstNull | ZeroInit):
            return SymbolicValue.constant(0, ty)
        if isinstance(expr, AddressOf):
            pointer = SymbolicValue(make_pointer(*self._address(expr)), PTR)
            return pointer if isinstance(ty, PointerType) else cast(pointer, PTR, ty)
        if isinstance(expr, ValueOf):
            source_id, source_offset, source_type = self._locate(expr)
            if source_type.size != ty.size:
                raise LayoutError(f"{where}: cannot initialize {ty} from {source_type} value of '{expr.symbol}'")
            return self.memory.load(source_id, source_offset, ty)
        if isinstance(expr, ConstBinary):
            left, right = (self.scalar(arg, ty, where) for arg in expr.args)
            return binary_op(expr.opcode, left, right, ty)
        raise LayoutError(f"{where}: unsupported initializer {expr!r} for {ty}")

    def _address(self, expr: AddressOf) -> tuple[int, int]:
        symbol = self.symbols.get(expr.symbol)
        if symbol is None:
            raise UnresolvedSymbolError(expr.symbol)
        if symbol.kind != "global":
            if expr.path not in ((), (0,)):
                raise LinkError(f"Cannot index into function '{expr.symbol}'")
            return symbol.object_id, 0
        offset, _ = element_offset(self.globals[expr.symbol].type, expr.path)
        return symbol.object_id, offset

    def _locate(self, expr: ValueOf) -> tuple[int, int, Type]:
        variable = self.globals.get(expr.symbol)
        if variable is None:
            raise LinkError(f"Initializer reads the value of '{expr.symbol}', which is not a global variable")
        offset, ty = element_offset(variable.type, expr.path)
        return self.symbols[expr.symbol].object_id, offset, ty


def evaluate_initializers(
    globals_: Mapping[str, GlobalVariable],
    symbols: Mapping[str, Symbol],
    memory: Memory,
) -> None:
    """Fill every global's object in ``memory`` from its initializer."""
    _Evaluator(globals_, symbols, memory).run()
