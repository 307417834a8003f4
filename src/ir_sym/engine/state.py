"""Execution state models: frames, try regions and forkable path state."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

import z3

from ..ir.module import CatchHandler, Function, Instruction
from .memory import Memory
from .values import SymbolicValue

__all__ = [
    "BoundHit",
    "ExecutionState",
    "Frame",
    "PendingException",
    "StateStatus",
    "TryRegion",
    "WatchEvent",
]


class StateStatus(StrEnum):
    RUNNING = "running"
    RETURNED = "return"
    UNCAUGHT = "uncaught_exception"
    BOUND_EXCEEDED = "bound_exceeded"
    ABORTED = "abort"
    MEMORY_ERROR = "memory_error"
    ERROR = "error"


@dataclass(slots=True, frozen=True)
class TryRegion:
    handlers: tuple[CatchHandler, ...]
    caught_depth: int = 0

    def handler_for(self, exception_type: str) -> CatchHandler | None:
        for handler in self.handlers:
            if handler.matches(exception_type):
                return handler
        return None


@dataclass(slots=True, frozen=True)
class PendingException:
    type: str
    payload: SymbolicValue | None = None


@dataclass(slots=True, frozen=True)
class WatchEvent:
    """A load or store that touched a watched range when ``condition`` holds."""

    name: str
    access: str
    location: str
    condition: z3.BoolRef

    def __str__(self) -> str:
        return f"{self.name}: {self.access} at {self.location}"


@dataclass(slots=True, frozen=True)
class BoundHit:
    kind: str
    location: str

    def __str__(self) -> str:
        return f"{self.kind} bound at {self.location}"


@dataclass(slots=True)
class Frame:
    function: Function
    block: str
    index: int = 0
    registers: dict[str, SymbolicValue] = field(default_factory=dict)
    prev_block: str | None = None
    try_regions: list[TryRegion] = field(default_factory=list)
    caught: list[PendingException] = field(default_factory=list)
    allocas: list[int] = field(default_factory=list)
    call_dest: str | None = None
    loop_counts: dict[str, int] = field(default_factory=dict)

    def current(self) -> Instruction:
        return self.function.blocks[self.block].instructions[self.index]

    def clone(self) -> Frame:
        return Frame(
            function=self.function,
            block=self.block,
            index=self.index,
            registers=dict(self.registers),
            prev_block=self.prev_block,
            try_regions=list(self.try_regions),
            caught=list(self.caught),
            allocas=list(self.allocas),
            call_dest=self.call_dest,
            loop_counts=dict(self.loop_counts),
        )


@dataclass(slots=True)
class ExecutionState:
    frames: list[Frame]
    memory: Memory
    path_condition: tuple[z3.BoolRef, ...] = ()
    checked: int = 0
    pending_exception: PendingException | None = None
    status: StateStatus = StateStatus.RUNNING
    return_value: SymbolicValue | None = None
    exception: PendingException | None = None
    bound: BoundHit | None = None
    message: str | None = None
    trace: list[str] = field(default_factory=list)
    steps: int = 0
    watch_events: list[WatchEvent] = field(default_factory=list)

    @property
    def frame(self) -> Frame:
        return self.frames[-1]

    @property
    def is_terminal(self) -> bool:
        return self.status != StateStatus.RUNNING

    def clone(self) -> ExecutionState:
        return ExecutionState(
            frames=[frame.clone() for frame in self.frames],
            memory=self.memory.fork(),
            path_condition=self.path_condition,
            checked=self.checked,
            pending_exception=self.pending_exception,
            status=self.status,
            return_value=self.return_value,
            exception=self.exception,
            bound=self.bound,
            message=self.message,
            trace=list(self.trace),
            steps=self.steps,
            watch_events=list(self.watch_events),
        )

    def pop_frame(self) -> Frame:
        """Leave the active frame, killing its stack objects."""
        frame = self.frames.pop()
        for object_id in frame.allocas:
            self.memory.release(object_id)
        return frame

    def constrain(self, condition: z3.BoolRef) -> None:
        condition = z3.simplify(condition)
        if z3.is_true(condition):
            return
        self.path_condition = (*self.path_condition, condition)

    def terminate(self, status: StateStatus, message: str | None = None) -> None:
        self.status = status
        self.message = message

    def exceed(self, kind: str, location: str) -> None:
        self.bound = BoundHit(kind, location)
        self.terminate(StateStatus.BOUND_EXCEEDED, str(self.bound))
