"""Call dispatch: direct, indirect and hooked calls, frame push and pop."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import z3

from ..errors import ExecutionError
from ..ir.module import GlobalRef, Instruction
from ..ir.types import PTR, VoidType
from .hooks import BUILTIN_HOOKS, CallContext, Hook
from .memory import make_pointer, pointer_object, pointer_offset
from .state import ExecutionState, Frame, StateStatus
from .values import SymbolicValue

if TYPE_CHECKING:
    from .interpreter import Interpreter

__all__ = ["CallDispatcher"]

logger = logging.getLogger(__name__)


class CallDispatcher:
    def __init__(self, interpreter: Interpreter) -> None:
        self.interpreter = interpreter
        self.project = interpreter.project
        self.config = interpreter.config
        self.user_hooks: dict[str, Hook] = dict(self.config.function_hooks)

    def hook_for(self, name: str) -> Hook | None:
        """User hooks override definitions; builtins only fill in missing bodies."""
        hook = self.user_hooks.get(name)
        if hook is None and name not in self.project.functions:
            hook = BUILTIN_HOOKS.get(name)
        return hook

    def call(self, state: ExecutionState, instruction: Instruction) -> list[ExecutionState]:
        callee = instruction.callee
        if isinstance(callee, GlobalRef):
            return self.invoke(state, instruction, callee.name)

        pointer = self.interpreter.operand(state, callee, PTR)
        object_part = pointer_object(pointer.expr)
        if z3.is_bv_value(object_part):
            name = self.project.callee_by_id.get(object_part.as_long())
            offset = pointer_offset(pointer.expr)
            if name is None or not (z3.is_bv_value(offset) and offset.as_long() == 0):
                state.terminate(StateStatus.MEMORY_ERROR, "indirect call through a pointer that is not a function")
                return [state]
            return self.invoke(state, instruction, name)
        return self._fork_indirect(state, instruction, pointer)

    def _fork_indirect(
        self,
        state: ExecutionState,
        instruction: Instruction,
        pointer: SymbolicValue,
    ) -> list[ExecutionState]:
        arity = len(instruction.operands)
        successors: list[ExecutionState] = []
        misses: list[z3.BoolRef] = []
        for name in sorted(self.project.address_taken):
            if not self._accepts(name, arity):
                continue
            address = make_pointer(self.project.object_id(name))
            branch = state.clone()
            branch.constrain(pointer.expr == address)
            misses.append(pointer.expr != address)
            successors.extend(self.invoke(branch, instruction, name))
        logger.debug("Indirect call forked over %d candidate(s)", len(misses))
        state.constrain(z3.And(*misses) if misses else z3.BoolVal(True))
        state.terminate(StateStatus.MEMORY_ERROR, "indirect call through an invalid function pointer")
        successors.append(state)
        return successors

    def _accepts(self, name: str, arity: int) -> bool:
        if self.hook_for(name) is not None:
            return True
        function = self.project.functions.get(name)
        return function is not None and len(function.params) == arity

    def invoke(self, state: ExecutionState, instruction: Instruction, name: str) -> list[ExecutionState]:
        hook = self.hook_for(name)
        if hook is not None:
            args = [self.interpreter.operand(state, operand, None) for operand in instruction.operands]
            return list(hook(CallContext(self.interpreter, state, instruction, args)))

        function = self.project.functions.get(name)
        if function is None:
            raise ExecutionError(f"call to undefined function '{name}'")
        if len(instruction.operands) != len(function.params):
            raise ExecutionError(
                f"'{name}' takes {len(function.params)} argument(s), called with {len(instruction.operands)}"
            )
        registers = {
            param.name: self.interpreter.operand(state, operand, param.type)
            for param, operand in zip(function.params, instruction.operands)
        }

        if len(state.frames) >= self.config.max_call_depth:
            state.exceed("call_depth", name)
            return [state]
        active = sum(1 for frame in state.frames if frame.function.name == name)
        if active >= self.config.recursion_bound:
            logger.debug("Recursion bound hit calling %s", name)
            state.exceed("recursion", name)
            return [state]

        state.frames.append(Frame(function, function.entry, registers=registers, call_dest=instruction.dest))
        state.trace.append(f"{name}:{function.entry}")
        return [state]

    def ret(self, state: ExecutionState, instruction: Instruction) -> list[ExecutionState]:
        frame = state.frame
        return_type = frame.function.return_type
        value = None
        if instruction.operands:
            if isinstance(return_type, VoidType):
                raise ExecutionError(f"'{frame.function.name}' returns void but 'ret' has a value")
            value = self.interpreter.operand(state, instruction.operands[0], return_type)
        elif not isinstance(return_type, VoidType):
            raise ExecutionError(f"'{frame.function.name}' must return a {return_type}")

        state.pop_frame()
        if not state.frames:
            state.return_value = value
            state.terminate(StateStatus.RETURNED)
            return [state]
        if frame.call_dest:
            if value is None:
                raise ExecutionError(f"void '{frame.function.name}' used as a value")
            state.frame.registers[frame.call_dest] = value
        return [state]
