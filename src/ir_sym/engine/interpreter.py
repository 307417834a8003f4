"""Single-instruction step function over execution states.

``Interpreter.step`` consumes one instruction of the active frame and returns
the successor states: usually the same state advanced in place, two states at
a symbolic branch, several at a switch or an ambiguous pointer. It never asks
the solver anything; pruning infeasible successors is the explorer's job.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import z3

from ..config import Config, OutOfBoundsPolicy, Watchpoint
from ..errors import ConfigError, ExecutionError
from ..ir.module import GlobalRef, Instruction, IntLiteral, NullLiteral, Operand, Register
from ..ir.opcodes import BINARY_OPCODES, Opcode
from ..ir.types import I64, PTR, ArrayType, PointerType, StructType, Type, VectorType
from . import unwind
from .calls import CallDispatcher
from .memory import ObjectKind, make_pointer, pointer_add
from .state import ExecutionState, PendingException, StateStatus, WatchEvent
from .values import (
    SymbolicValue,
    binary_op,
    bool_value,
    cast,
    compare,
    fresh,
    from_lanes,
    lanes,
    reduce_lanes,
    truth,
)

if TYPE_CHECKING:
    from ..link.linker import Project

__all__ = ["Interpreter", "MemoryTarget"]

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class MemoryTarget:
    """A state in which a pointer designates ``object_id`` at ``offset``.

    ``in_bounds`` is ``None`` when the access is known to fit; otherwise it is
    the condition under which it does (symbolic out-of-bounds policy only).
    """

    state: ExecutionState
    object_id: int
    offset: z3.BitVecRef
    in_bounds: z3.BoolRef | None = None


class Interpreter:
    def __init__(self, project: Project, config: Config | None = None) -> None:
        self.project = project
        self.config = config or Config()
        self.calls = CallDispatcher(self)
        self.watched: list[tuple[str, int, Watchpoint]] = []
        for name, watchpoint in self.config.watchpoints.items():
            symbol = project.symbols.get(watchpoint.symbol)
            if symbol is None or symbol.kind != "global":
                raise ConfigError(f"Watchpoint '{name}' names unknown global '{watchpoint.symbol}'")
            if watchpoint.offset + watchpoint.size > symbol.size:
                raise ConfigError(
                    f"Watchpoint '{name}' covers bytes past the end of '{watchpoint.symbol}' ({symbol.size} bytes)"
                )
            self.watched.append((name, symbol.object_id, watchpoint))

    def step(self, state: ExecutionState) -> list[ExecutionState]:
        state.steps += 1
        try:
            if state.pending_exception is not None:
                return unwind.unwind_step(self, state)
            frame = state.frame
            instruction = frame.current()
            for callback in self.config.instruction_callbacks:
                callback(instruction, state)
            frame.index += 1
            return self._execute(state, instruction)
        except ExecutionError as exc:
            location = f"{state.frame.function.name}:{state.frame.block}" if state.frames else "<no frame>"
            logger.debug("Execution error at %s: %s", location, exc)
            state.terminate(StateStatus.ERROR, f"{location}: {exc}")
            return [state]

    def _execute(self, state: ExecutionState, instruction: Instruction) -> list[ExecutionState]:
        opcode = instruction.opcode
        frame = state.frame
        ty = instruction.type

        if opcode in BINARY_OPCODES:
            left = self.operand(state, instruction.operands[0], ty)
            right = self.operand(state, instruction.operands[1], ty)
            frame.registers[instruction.dest] = binary_op(opcode, left, right, ty)
            return [state]

        if opcode == Opcode.CMP:
            if isinstance(ty, VectorType):
                raise ExecutionError("vector comparisons are not supported")
            left = self.operand(state, instruction.operands[0], ty)
            right = self.operand(state, instruction.operands[1], ty)
            frame.registers[instruction.dest] = bool_value(compare(instruction.predicate, left, right, ty)).simplified()
            return [state]

        if opcode == Opcode.CAST:
            source = instruction.source_type
            value = self.operand(state, instruction.operands[0], source)
            frame.registers[instruction.dest] = cast(value, source, ty)
            return [state]

        if opcode == Opcode.SELECT:
            condition = truth(self.operand(state, instruction.operands[0], None))
            then_value = self.operand(state, instruction.operands[1], ty)
            else_value = self.operand(state, instruction.operands[2], ty)
            frame.registers[instruction.dest] = SymbolicValue(
                z3.simplify(z3.If(condition, then_value.expr, else_value.expr)), ty
            )
            return [state]

        if opcode == Opcode.PHI:
            raise ExecutionError(f"phi %{instruction.dest} is not at the start of its block")

        if opcode == Opcode.ALLOCA:
            obj = state.memory.allocate(
                ty.size,
                name=f"{frame.function.name}.{instruction.dest}",
                kind=ObjectKind.STACK,
                zeroed=instruction.zeroed,
            )
            frame.allocas.append(obj.id)
            frame.registers[instruction.dest] = state.memory.address_of(obj.id)
            return [state]

        if opcode == Opcode.LOAD:
            return self._handle_load(state, instruction)

        if opcode == Opcode.STORE:
            return self._handle_store(state, instruction)

        if opcode == Opcode.GEP:
            frame.registers[instruction.dest] = self._element_pointer(state, instruction)
            return [state]

        if opcode == Opcode.BR:
            self.jump(state, instruction.targets[0])
            return [state]

        if opcode == Opcode.CONDBR:
            return self._handle_condbr(state, instruction)

        if opcode == Opcode.SWITCH:
            return self._handle_switch(state, instruction)

        if opcode == Opcode.CALL:
            return self.calls.call(state, instruction)

        if opcode == Opcode.RET:
            return self.calls.ret(state, instruction)

        if opcode == Opcode.UNREACHABLE:
            state.terminate(StateStatus.ABORTED, f"reached unreachable in {frame.function.name}:{frame.block}")
            return [state]

        if opcode == Opcode.TRY:
            return unwind.begin_try(state, instruction)

        if opcode == Opcode.ENDTRY:
            return unwind.end_try(state)

        if opcode == Opcode.THROW:
            payload = self.operand(state, instruction.operands[0], ty)
            return unwind.throw(state, PendingException(instruction.exception_type, payload))

        if opcode == Opcode.RETHROW:
            return unwind.rethrow(state)

        if opcode == Opcode.ENDCATCH:
            return unwind.end_catch(state)

        if opcode in (Opcode.EXTRACTELEMENT, Opcode.INSERTELEMENT, Opcode.SHUFFLE, Opcode.REDUCE):
            frame.registers[instruction.dest] = self._vector_op(state, instruction)
            return [state]

        raise ExecutionError(f"unsupported opcode '{opcode}'")

    # -- operands ---------------------------------------------------------

    def operand(self, state: ExecutionState, operand: Operand, ty: Type | None) -> SymbolicValue:
        """Evaluate ``operand``; literals take ``ty``, registers are checked against it."""
        if isinstance(operand, Register):
            value = state.frame.registers.get(operand.name)
            if value is None:
                raise ExecutionError(f"use of undefined register %{operand.name}")
            if ty is None or value.type == ty:
                return value
            if value.expr.size() != ty.bits:
                raise ExecutionError(f"%{operand.name} has type {value.type}, used as {ty}")
            return SymbolicValue(value.expr, ty)
        if isinstance(operand, IntLiteral):
            return SymbolicValue.constant(operand.value, ty if ty is not None else I64)
        if isinstance(operand, NullLiteral):
            return SymbolicValue.constant(0, ty if ty is not None else PTR)
        if isinstance(operand, GlobalRef):
            if ty is not None and ty.bits != PTR.bits:
                raise ExecutionError(f"address of @{operand.name} used as {ty}")
            return SymbolicValue(make_pointer(self.project.object_id(operand.name)), PTR)
        raise ExecutionError(f"invalid operand {operand!r}")

    # -- control flow -----------------------------------------------------

    def jump(self, state: ExecutionState, target: str) -> None:
        """Move the active frame to ``target``, enforcing the loop bound."""
        frame = state.frame
        function = frame.function
        source = frame.block
        if (source, target) in function.back_edges:
            count = frame.loop_counts.get(target, 0) + 1
            if count > self.config.loop_bound:
                logger.debug("Loop bound hit at %s:%s", function.name, target)
                state.exceed("loop", f"{function.name}:{target}")
                return
            frame.loop_counts[target] = count
        elif target in function.loop_headers:
            frame.loop_counts[target] = 0
        frame.prev_block = source
        frame.block = target
        frame.index = 0
        state.trace.append(f"{function.name}:{target}")
        try:
            self._run_phis(state)
        except ExecutionError as exc:
            state.terminate(StateStatus.ERROR, f"{function.name}:{target}: {exc}")

    def _run_phis(self, state: ExecutionState) -> None:
        frame = state.frame
        updates: dict[str, SymbolicValue] = {}
        index = 0
        for instruction in frame.function.blocks[frame.block].instructions:
            if instruction.opcode != Opcode.PHI:
                break
            for label, operand in instruction.incoming:
                if label == frame.prev_block:
                    updates[instruction.dest] = self.operand(state, operand, instruction.type)
                    break
            else:
                raise ExecutionError(f"phi %{instruction.dest} has no value for predecessor '{frame.prev_block}'")
            index += 1
        frame.registers.update(updates)
        frame.index = index

    def _handle_condbr(self, state: ExecutionState, instruction: Instruction) -> list[ExecutionState]:
        condition = z3.simplify(truth(self.operand(state, instruction.operands[0], None)))
        then_label, else_label = instruction.targets
        if z3.is_true(condition):
            self.jump(state, then_label)
            return [state]
        if z3.is_false(condition):
            self.jump(state, else_label)
            return [state]
        other = state.clone()
        state.constrain(condition)
        self.jump(state, then_label)
        other.constrain(z3.Not(condition))
        self.jump(other, else_label)
        return [state, other]

    def _handle_switch(self, state: ExecutionState, instruction: Instruction) -> list[ExecutionState]:
        value = self.operand(state, instruction.operands[0], instruction.type)
        default = instruction.targets[0]
        concrete = value.as_int()
        if concrete is not None:
            bits = instruction.type.bits
            for case, label in instruction.cases:
                if case % (1 << bits) == concrete % (1 << bits):
                    self.jump(state, label)
                    return [state]
            self.jump(state, default)
            return [state]

        successors: list[ExecutionState] = []
        misses: list[z3.BoolRef] = []
        for case, label in instruction.cases:
            case_value = SymbolicValue.constant(case, instruction.type).expr
            hit = z3.simplify(value.expr == case_value)
            misses.append(value.expr != case_value)
            if z3.is_false(hit):
                continue
            branch = state.clone()
            branch.constrain(hit)
            self.jump(branch, label)
            successors.append(branch)
        state.constrain(z3.And(*misses) if misses else z3.BoolVal(True))
        self.jump(state, default)
        successors.append(state)
        return successors

    # -- memory -----------------------------------------------------------

    def access(
        self,
        state: ExecutionState,
        pointer: SymbolicValue,
        nbytes: int,
        *,
        write: bool = False,
    ) -> tuple[list[MemoryTarget], list[ExecutionState]]:
        """Resolve ``pointer`` for an ``nbytes`` access.

        Returns the states that may proceed with their target object, and the
        terminal states (memory errors) split off along the way.
        """
        accesses = state.memory.resolve(pointer.expr, nbytes)
        targets: list[MemoryTarget] = []
        failed: list[ExecutionState] = []
        for i, access in enumerate(accesses):
            branch = state if i == len(accesses) - 1 else state.clone()
            guard = z3.simplify(access.guard)
            if z3.is_false(guard):
                continue
            branch.constrain(guard)
            if access.object_id is None:
                branch.terminate(StateStatus.MEMORY_ERROR, access.reason)
                failed.append(branch)
                continue
            obj = branch.memory.get(access.object_id)
            if write and obj.read_only:
                branch.terminate(StateStatus.MEMORY_ERROR, f"write to read-only object '{obj.name}'")
                failed.append(branch)
                continue
            in_bounds = z3.simplify(access.in_bounds)
            if z3.is_true(in_bounds):
                targets.append(MemoryTarget(branch, access.object_id, access.offset))
                continue
            message = f"out-of-bounds access of {nbytes} byte(s) to '{obj.name}' (size {obj.size})"
            if self.config.out_of_bounds == OutOfBoundsPolicy.SYMBOLIC:
                targets.append(MemoryTarget(branch, access.object_id, access.offset, in_bounds))
                continue
            if z3.is_false(in_bounds):
                branch.terminate(StateStatus.MEMORY_ERROR, message)
                failed.append(branch)
                continue
            error = branch.clone()
            error.constrain(z3.Not(in_bounds))
            error.terminate(StateStatus.MEMORY_ERROR, message)
            failed.append(error)
            branch.constrain(in_bounds)
            targets.append(MemoryTarget(branch, access.object_id, access.offset))
        return targets, failed

    def _handle_load(self, state: ExecutionState, instruction: Instruction) -> list[ExecutionState]:
        ty = instruction.type
        pointer = self.operand(state, instruction.operands[0], PTR)
        targets, failed = self.access(state, pointer, ty.size)
        for target in targets:
            self._watch(target, ty.size, "load")
            memory = target.state.memory
            if target.in_bounds is None:
                value = memory.load(target.object_id, target.offset, ty)
            else:
                value = memory.load_or_fresh(target.object_id, target.offset, ty, target.in_bounds)
            target.state.frame.registers[instruction.dest] = value
        return [target.state for target in targets] + failed

    def _handle_store(self, state: ExecutionState, instruction: Instruction) -> list[ExecutionState]:
        ty = instruction.type
        value = self.operand(state, instruction.operands[0], ty)
        pointer = self.operand(state, instruction.operands[1], PTR)
        targets, failed = self.access(state, pointer, ty.size, write=True)
        for target in targets:
            self._watch(target, ty.size, "store")
            target.state.memory.store(target.object_id, target.offset, value, target.in_bounds)
        return [target.state for target in targets] + failed

    def _watch(self, target: MemoryTarget, size: int, access: str) -> None:
        for name, object_id, watchpoint in self.watched:
            if target.object_id != object_id:
                continue
            width = target.offset.size()
            low = z3.BitVecVal(watchpoint.offset, width)
            high = z3.BitVecVal(watchpoint.offset + watchpoint.size - 1, width)
            hit = z3.And(z3.ULE(target.offset, high), z3.UGE(target.offset + (size - 1), low))
            if target.in_bounds is not None:
                hit = z3.And(hit, target.in_bounds)
            hit = z3.simplify(hit)
            if z3.is_false(hit):
                continue
            frame = target.state.frame
            event = WatchEvent(name, access, f"{frame.function.name}:{frame.block}", hit)
            target.state.watch_events.append(event)
            logger.info("Watchpoint %s", event)

    def _element_pointer(self, state: ExecutionState, instruction: Instruction) -> SymbolicValue:
        operands = instruction.operands
        base = self.operand(state, operands[0], PTR)
        current: Type = instruction.type
        expr = base.expr
        if len(operands) > 1:
            expr = pointer_add(expr, self._index(state, operands[1]), current.size)
        for operand in operands[2:]:
            if isinstance(current, StructType):
                field = self._index(state, operand)
                if not isinstance(field, int):
                    raise ExecutionError(f"struct field index into {current} must be constant")
                expr = pointer_add(expr, current.field_offset(field), 1)
                current = current.fields[field]
            elif isinstance(current, ArrayType | VectorType):
                expr = pointer_add(expr, self._index(state, operand), current.element.size)
                current = current.element
            else:
                raise ExecutionError(f"cannot index into {current}")
        return SymbolicValue(expr, PTR)

    def _index(self, state: ExecutionState, operand: Operand) -> int | SymbolicValue:
        if isinstance(operand, IntLiteral):
            return operand.value
        value = self.operand(state, operand, None)
        if isinstance(value.type, PointerType):
            raise ExecutionError("pointer used as an element index")
        concrete = value.as_int()
        return concrete if concrete is not None else value

    # -- vectors ----------------------------------------------------------

    def _vector_op(self, state: ExecutionState, instruction: Instruction) -> SymbolicValue:
        ty: VectorType = instruction.type
        element = ty.element
        operands = instruction.operands
        vector = self.operand(state, operands[0], ty)
        items = lanes(vector.expr, ty)

        if instruction.opcode == Opcode.REDUCE:
            return reduce_lanes(instruction.predicate, vector, ty)

        if instruction.opcode == Opcode.EXTRACTELEMENT:
            index = self.operand(state, operands[1], None)
            concrete = index.as_int()
            if concrete is not None:
                if not 0 <= concrete < ty.count:
                    raise ExecutionError(f"lane {concrete} out of range for {ty}")
                return SymbolicValue(z3.simplify(items[concrete]), element)
            result = fresh("lane", element).expr
            for i, item in enumerate(items):
                result = z3.If(index.expr == z3.BitVecVal(i, index.expr.size()), item, result)
            return SymbolicValue(z3.simplify(result), element)

        if instruction.opcode == Opcode.INSERTELEMENT:
            value = self.operand(state, operands[1], element)
            index = self.operand(state, operands[2], None)
            concrete = index.as_int()
            if concrete is not None:
                if not 0 <= concrete < ty.count:
                    raise ExecutionError(f"lane {concrete} out of range for {ty}")
                items[concrete] = value.expr
            else:
                items = [
                    z3.If(index.expr == z3.BitVecVal(i, index.expr.size()), value.expr, item)
                    for i, item in enumerate(items)
                ]
            return SymbolicValue(z3.simplify(from_lanes(items)), ty)

        other = self.operand(state, operands[1], ty)
        pool = items + lanes(other.expr, ty)
        shuffled: list[z3.BitVecRef] = []
        for selector in instruction.mask:
            if selector < 0:
                shuffled.append(fresh("undef", element).expr)
            elif selector < len(pool):
                shuffled.append(pool[selector])
            else:
                raise ExecutionError(f"shuffle selector {selector} out of range")
        return SymbolicValue(z3.simplify(from_lanes(shuffled)), VectorType(element, len(shuffled)))

