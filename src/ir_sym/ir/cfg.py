"""Control-flow helpers: block successors and loop back edges."""
from __future__ import annotations

from typing import TYPE_CHECKING

from .opcodes import Opcode

if TYPE_CHECKING:
    from .module import BasicBlock, Function

__all__ = ["find_back_edges", "successors"]


def successors(block: BasicBlock) -> list[str]:
    """Labels reachable from ``block`` in one step, in declaration order."""
    found: list[str] = []
    for instruction in block.instructions:
        if instruction.opcode in (Opcode.BR, Opcode.CONDBR):
            found.extend(instruction.targets)
        elif instruction.opcode == Opcode.SWITCH:
            found.extend(label for _, label in instruction.cases)
            found.extend(instruction.targets)
        elif instruction.opcode == Opcode.TRY:
            found.extend(handler.target for handler in instruction.handlers)
    unique: list[str] = []
    for label in found:
        if label not in unique:
            unique.append(label)
    return unique


def find_back_edges(function: Function) -> frozenset[tuple[str, str]]:
    """Return ``(source, header)`` edges that close a loop.

    An edge is a back edge when its target is still on the depth-first search
    stack, which for the reducible CFGs emitted by C/C++ front ends identifies
    exactly the natural-loop latches.
    """
    if not function.blocks:
        return frozenset()

    back: set[tuple[str, str]] = set()
    on_stack: set[str] = set()
    visited: set[str] = set()
    entry = function.entry
    stack: list[tuple[str, list[str]]] = [(entry, successors(function.blocks[entry]))]
    visited.add(entry)
    on_stack.add(entry)

    while stack:
        label, pending = stack[-1]
        if not pending:
            stack.pop()
            on_stack.discard(label)
            continue
        nxt = pending.pop(0)
        if nxt not in function.blocks:
            continue
        if nxt in on_stack:
            back.add((label, nxt))
            continue
        if nxt in visited:
            continue
        visited.add(nxt)
        on_stack.add(nxt)
        stack.append((nxt, successors(function.blocks[nxt])))

    return frozenset(back)
