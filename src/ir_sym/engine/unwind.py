"""Exception unwinding as an explicit, steppable state machine.

A throw only records a :class:`PendingException`. Each subsequent step either
transfers to a matching handler of the innermost try region, discards a
non-matching region, or pops the active frame. An exception that outlives the
last frame is an uncaught-exception outcome.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

from ..errors import ExecutionError
from ..ir.module import Instruction
from .state import ExecutionState, PendingException, StateStatus, TryRegion

if TYPE_CHECKING:
    from .interpreter import Interpreter

__all__ = ["begin_try", "end_catch", "end_try", "rethrow", "throw", "unwind_step"]


def begin_try(state: ExecutionState, instruction: Instruction) -> list[ExecutionState]:
    state.frame.try_regions.append(TryRegion(instruction.handlers, len(state.frame.caught)))
    return [state]


def end_try(state: ExecutionState) -> list[ExecutionState]:
    if not state.frame.try_regions:
        raise ExecutionError("endtry without an active try region")
    state.frame.try_regions.pop()
    return [state]


def end_catch(state: ExecutionState) -> list[ExecutionState]:
    if not state.frame.caught:
        raise ExecutionError("endcatch outside of a handler")
    state.frame.caught.pop()
    return [state]


def throw(state: ExecutionState, exception: PendingException) -> list[ExecutionState]:
    state.pending_exception = exception
    return [state]


def rethrow(state: ExecutionState) -> list[ExecutionState]:
    """Re-raise the exception being handled; the region that caught it is already gone."""
    for frame in reversed(state.frames):
        if frame.caught:
            state.pending_exception = frame.caught.pop()
            return [state]
    state.terminate(StateStatus.ABORTED, "rethrow with no active exception")
    return [state]


def unwind_step(interpreter: Interpreter, state: ExecutionState) -> list[ExecutionState]:
    exception = state.pending_exception
    frame = state.frame
    while frame.try_regions:
        region = frame.try_regions.pop()
        del frame.caught[region.caught_depth:]
        handler = region.handler_for(exception.type)
        if handler is None:
            continue
        state.pending_exception = None
        frame.caught.append(exception)
        if handler.bind is not None and exception.payload is not None:
            frame.registers[handler.bind] = exception.payload
        interpreter.jump(state, handler.target)
        return [state]

    state.pop_frame()
    if not state.frames:
        state.pending_exception = None
        state.exception = exception
        state.terminate(StateStatus.UNCAUGHT, f"uncaught exception of type {exception.type}")
    return [state]
