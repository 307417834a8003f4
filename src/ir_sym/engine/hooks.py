"""Builtin models of libc functions and the hook calling convention.

A hook receives a :class:`CallContext` and returns the successor states of the
call, exactly like a step of the interpreter. ``CallContext.finish`` writes
the call's result register and returns the state.
"""
from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

import z3

from ..config import OutOfBoundsPolicy
from ..errors import ExecutionError
from ..ir.module import Instruction
from ..ir.types import PTR
from .memory import ObjectKind, make_pointer, pointer_object
from .state import ExecutionState, StateStatus
from .values import SymbolicValue, cast, concrete_int

if TYPE_CHECKING:
    from ..config import Config
    from .interpreter import Interpreter, MemoryTarget

__all__ = ["BUILTIN_HOOKS", "CallContext", "Hook"]


@dataclass(slots=True)
class CallContext:
    interpreter: Interpreter
    state: ExecutionState
    instruction: Instruction
    args: list[SymbolicValue]

    @property
    def config(self) -> Config:
        return self.interpreter.config

    def arg(self, index: int) -> SymbolicValue:
        if index >= len(self.args):
            raise ExecutionError(f"call passes {len(self.args)} argument(s), argument {index} is missing")
        return self.args[index]

    def int_arg(self, index: int, bits: int = 64) -> z3.BitVecRef:
        """Argument ``index`` zero-extended or truncated to ``bits``."""
        expr = self.arg(index).expr
        if expr.size() > bits:
            return z3.simplify(z3.Extract(bits - 1, 0, expr))
        if expr.size() < bits:
            return z3.simplify(z3.ZeroExt(bits - expr.size(), expr))
        return expr

    def pointer_arg(self, index: int) -> SymbolicValue:
        value = self.arg(index)
        if value.expr.size() != PTR.bits:
            raise ExecutionError(f"argument {index} is not a pointer")
        return SymbolicValue(value.expr, PTR)

    def finish(self, value: SymbolicValue | None = None, state: ExecutionState | None = None) -> list[ExecutionState]:
        state = state or self.state
        dest = self.instruction.dest
        if dest:
            if value is None:
                raise ExecutionError(f"hooked call to a void function assigned to %{dest}")
            ty = self.instruction.type
            if value.expr.size() != ty.bits:
                value = cast(value, value.type, ty)
            state.frame.registers[dest] = SymbolicValue(value.expr, ty)
        return [state]


Hook = Callable[[CallContext], Iterable[ExecutionState]]


def _allocation_size(ctx: CallContext, size: z3.BitVecRef) -> int:
    concrete = concrete_int(size)
    if concrete is not None:
        return concrete
    bound = ctx.config.max_symbolic_allocation
    ctx.state.constrain(z3.ULE(size, z3.BitVecVal(bound, size.size())))
    return bound


def _allocate(ctx: CallContext, size: int, zeroed: bool, state: ExecutionState | None = None) -> SymbolicValue:
    state = state or ctx.state
    name = f"heap.{ctx.instruction.dest or 'anon'}"
    obj = state.memory.allocate(size, name=name, kind=ObjectKind.HEAP, zeroed=zeroed)
    return SymbolicValue(make_pointer(obj.id), PTR)


def _malloc(ctx: CallContext) -> list[ExecutionState]:
    return ctx.finish(_allocate(ctx, _allocation_size(ctx, ctx.int_arg(0)), zeroed=False))


def _calloc(ctx: CallContext) -> list[ExecutionState]:
    total = z3.simplify(ctx.int_arg(0) * ctx.int_arg(1))
    return ctx.finish(_allocate(ctx, _allocation_size(ctx, total), zeroed=True))


def _heap_targets(ctx: CallContext, pointer: SymbolicValue, action: str) -> tuple[list[MemoryTarget], list[ExecutionState]]:
    """Heap objects ``pointer`` may designate, requiring it to point at the object's start."""
    targets, failed = ctx.interpreter.access(ctx.state, pointer, 0)
    valid: list[MemoryTarget] = []
    for target in targets:
        obj = target.state.memory.get(target.object_id)
        if obj.kind != ObjectKind.HEAP:
            target.state.terminate(StateStatus.MEMORY_ERROR, f"{action} of non-heap object '{obj.name}'")
            failed.append(target.state)
            continue
        at_start = z3.simplify(target.offset == 0)
        if z3.is_false(at_start):
            target.state.terminate(StateStatus.MEMORY_ERROR, f"{action} of pointer into the middle of '{obj.name}'")
            failed.append(target.state)
            continue
        target.state.constrain(at_start)
        valid.append(target)
    return valid, failed


def _is_null(pointer: SymbolicValue) -> bool:
    return concrete_int(pointer.expr) == 0


def _free(ctx: CallContext) -> list[ExecutionState]:
    pointer = ctx.pointer_arg(0)
    if _is_null(pointer):
        return ctx.finish()
    targets, failed = _heap_targets(ctx, pointer, "free")
    successors: list[ExecutionState] = []
    for target in targets:
        target.state.memory.free(target.object_id)
        successors.extend(ctx.finish(state=target.state))
    return successors + failed


def _realloc(ctx: CallContext) -> list[ExecutionState]:
    pointer = ctx.pointer_arg(0)
    size = _allocation_size(ctx, ctx.int_arg(1))
    if _is_null(pointer):
        return ctx.finish(_allocate(ctx, size, zeroed=False))
    targets, failed = _heap_targets(ctx, pointer, "realloc")
    successors: list[ExecutionState] = []
    for target in targets:
        memory = target.state.memory
        old = memory.get(target.object_id)
        moved = _allocate(ctx, size, zeroed=False, state=target.state)
        new_id = concrete_int(pointer_object(moved.expr))
        memory.copy(new_id, 0, old.id, 0, min(old.size, size))
        memory.free(old.id)
        successors.extend(ctx.finish(moved, state=target.state))
    return successors + failed


def _spans(
    ctx: CallContext,
    state: ExecutionState,
    pointer: SymbolicValue,
    length: z3.BitVecRef,
    write: bool,
) -> tuple[list[tuple[MemoryTarget, int, z3.BitVecRef | None]], list[ExecutionState]]:
    """Resolve a ``length``-byte range; yields (target, byte count, per-byte guard length)."""
    count = concrete_int(length)
    if count is not None:
        targets, failed = ctx.interpreter.access(state, pointer, count, write=write)
        return [(target, count, None) for target in targets], failed

    targets, failed = ctx.interpreter.access(state, pointer, 0, write=write)
    spans: list[tuple[MemoryTarget, int, z3.BitVecRef | None]] = []
    for target in targets:
        obj = target.state.memory.get(target.object_id)
        offset = concrete_int(target.offset)
        if offset is None:
            raise ExecutionError("memory range with both a symbolic offset and a symbolic length")
        available = max(obj.size - offset, 0)
        fits = z3.ULE(length, z3.BitVecVal(available, length.size()))
        if ctx.config.out_of_bounds == OutOfBoundsPolicy.REPORT:
            error = target.state.clone()
            error.constrain(z3.Not(fits))
            error.terminate(StateStatus.MEMORY_ERROR, f"range of symbolic length overflows '{obj.name}'")
            failed.append(error)
            target.state.constrain(fits)
        spans.append((target, available, length))
    return spans, failed


def _byte_guard(index: int, length: z3.BitVecRef | None, in_bounds: z3.BoolRef | None) -> z3.BoolRef | None:
    guards = []
    if length is not None:
        guards.append(z3.ULT(z3.BitVecVal(index, length.size()), length))
    if in_bounds is not None:
        guards.append(in_bounds)
    if not guards:
        return None
    return z3.And(*guards) if len(guards) > 1 else guards[0]


def _memset(ctx: CallContext) -> list[ExecutionState]:
    destination = ctx.pointer_arg(0)
    byte = z3.simplify(z3.Extract(7, 0, ctx.arg(1).expr))
    spans, failed = _spans(ctx, ctx.state, destination, ctx.int_arg(2), write=True)
    successors: list[ExecutionState] = []
    for target, count, length in spans:
        memory = target.state.memory
        for i in range(count):
            memory.write(target.object_id, target.offset + i, byte, _byte_guard(i, length, target.in_bounds))
        successors.extend(ctx.finish(destination, state=target.state))
    return successors + failed


def _memcpy(ctx: CallContext) -> list[ExecutionState]:
    """memcpy and memmove: all source bytes are read before any is written."""
    destination = ctx.pointer_arg(0)
    source = ctx.pointer_arg(1)
    length = ctx.int_arg(2)
    sources, failed = _spans(ctx, ctx.state, source, length, write=False)
    successors: list[ExecutionState] = []
    for src, src_count, src_length in sources:
        data = [
            src.state.memory.read(src.object_id, src.offset + i, 1)
            for i in range(src_count)
        ]
        destinations, dst_failed = _spans(ctx, src.state, destination, length, write=True)
        failed.extend(dst_failed)
        for dst, dst_count, dst_length in destinations:
            memory = dst.state.memory
            for i in range(min(src_count, dst_count)):
                guard = _byte_guard(i, dst_length if dst_length is not None else src_length, dst.in_bounds)
                memory.write(dst.object_id, dst.offset + i, data[i], guard)
            successors.extend(ctx.finish(destination, state=dst.state))
    return successors + failed


def _abort(ctx: CallContext) -> list[ExecutionState]:
    ctx.state.terminate(StateStatus.ABORTED, "abort() called")
    return [ctx.state]


def _exit(ctx: CallContext) -> list[ExecutionState]:
    code = ctx.arg(0).as_int() if ctx.args else None
    ctx.state.terminate(StateStatus.ABORTED, f"exit({code if code is not None else '?'}) called")
    return [ctx.state]


BUILTIN_HOOKS: dict[str, Hook] = {
    "malloc": _malloc,
    "calloc": _calloc,
    "realloc": _realloc,
    "free": _free,
    "memset": _memset,
    "memcpy": _memcpy,
    "memmove": _memcpy,
    "abort": _abort,
    "exit": _exit,
}
