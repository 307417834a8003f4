"""Byte-addressable symbolic memory built from independent objects.

Every pointer is a 64-bit term packing ``(object id, offset)``: the upper 32
bits name a :class:`MemoryObject`, the lower 32 bits are a byte offset into it.
Object 0 is null. Pointer arithmetic only ever touches the offset half, so an
address can never silently migrate into a neighbouring object; running off the
end of an object is an out-of-bounds access that callers can detect.

Object contents are z3 arrays from 32-bit offsets to bytes (little-endian).
A :class:`Memory` maps object ids to immutable :class:`MemoryObject` records,
so forking a state copies one dict and shares every untouched object.
"""
from __future__ import annotations

import itertools
from dataclasses import dataclass, replace
from enum import StrEnum

import z3

from ..errors import ExecutionError
from ..ir.types import PTR, Type
from .values import SymbolicValue, fresh

__all__ = [
    "NULL_OBJECT",
    "Access",
    "Memory",
    "MemoryObject",
    "ObjectKind",
    "make_pointer",
    "pointer_add",
    "pointer_object",
    "pointer_offset",
]

OFFSET_BITS = 32
OBJECT_BITS = 32
NULL_OBJECT = 0

_ADDRESS = z3.BitVecSort(OFFSET_BITS)
_BYTE = z3.BitVecSort(8)
_array_ids = itertools.count()


class ObjectKind(StrEnum):
    GLOBAL = "global"
    STACK = "stack"
    HEAP = "heap"
    FUNCTION = "function"


@dataclass(slots=True, frozen=True, eq=False)
class MemoryObject:
    id: int
    name: str
    size: int
    kind: ObjectKind
    contents: z3.ArrayRef
    freed: bool = False
    read_only: bool = False


@dataclass(slots=True, frozen=True, eq=False)
class Access:
    """One way a pointer can be dereferenced.

    ``object_id`` is ``None`` when the pointer refers to no valid object; then
    ``reason`` says why. ``guard`` is the condition under which the pointer
    designates this object, ``in_bounds`` the condition that the whole access
    fits inside it.
    """

    object_id: int | None
    offset: z3.BitVecRef
    guard: z3.BoolRef
    in_bounds: z3.BoolRef
    reason: str | None = None


def make_pointer(object_id: int, offset: int | z3.BitVecRef = 0) -> z3.BitVecRef:
    if isinstance(offset, int):
        offset = z3.BitVecVal(offset, OFFSET_BITS)
    return z3.simplify(z3.Concat(z3.BitVecVal(object_id, OBJECT_BITS), offset))


def pointer_object(pointer: z3.BitVecRef) -> z3.BitVecRef:
    return z3.simplify(z3.Extract(OFFSET_BITS + OBJECT_BITS - 1, OFFSET_BITS, pointer))


def pointer_offset(pointer: z3.BitVecRef) -> z3.BitVecRef:
    return z3.simplify(z3.Extract(OFFSET_BITS - 1, 0, pointer))


def pointer_add(pointer: z3.BitVecRef, count: int | SymbolicValue, element_size: int) -> z3.BitVecRef:
    """Advance ``pointer`` by ``count`` elements of ``element_size`` bytes."""
    if isinstance(count, int):
        delta = z3.BitVecVal(count * element_size, OFFSET_BITS)
    else:
        expr = count.expr
        width = expr.size()
        signed = getattr(count.type, "signed", False)
        if width > OFFSET_BITS:
            expr = z3.Extract(OFFSET_BITS - 1, 0, expr)
        elif width < OFFSET_BITS:
            expr = (z3.SignExt if signed else z3.ZeroExt)(OFFSET_BITS - width, expr)
        delta = expr * z3.BitVecVal(element_size, OFFSET_BITS)
    return z3.simplify(
        z3.Concat(
            z3.Extract(OFFSET_BITS + OBJECT_BITS - 1, OFFSET_BITS, pointer),
            z3.Extract(OFFSET_BITS - 1, 0, pointer) + delta,
        )
    )


def _in_bounds(offset: z3.BitVecRef, nbytes: int, size: int) -> z3.BoolRef:
    end = z3.ZeroExt(64 - OFFSET_BITS, offset) + z3.BitVecVal(nbytes, 64)
    return z3.simplify(z3.ULE(end, z3.BitVecVal(size, 64)))


def zero_contents() -> z3.ArrayRef:
    return z3.K(_ADDRESS, z3.BitVecVal(0, 8))


def symbolic_contents(name: str) -> z3.ArrayRef:
    return z3.Array(f"{name}#mem{next(_array_ids)}", _ADDRESS, _BYTE)


class Memory:
    """Per-state view of every live object."""

    def __init__(self, objects: dict[int, MemoryObject] | None = None, next_id: int = 1) -> None:
        self._objects: dict[int, MemoryObject] = dict(objects or {})
        self._next_id = next_id

    def fork(self) -> Memory:
        return Memory(self._objects, self._next_id)

    def __contains__(self, object_id: int) -> bool:
        return object_id in self._objects

    def __len__(self) -> int:
        return len(self._objects)

    def get(self, object_id: int) -> MemoryObject | None:
        return self._objects.get(object_id)

    def objects(self) -> list[MemoryObject]:
        return list(self._objects.values())

    def allocate(
        self,
        size: int,
        *,
        name: str,
        kind: ObjectKind,
        zeroed: bool = False,
        object_id: int | None = None,
    ) -> MemoryObject:
        if object_id is None:
            object_id = self._next_id
        if object_id == NULL_OBJECT or object_id in self._objects:
            raise ExecutionError(f"Object id {object_id} is already in use")
        self._next_id = max(self._next_id, object_id + 1)
        contents = zero_contents() if zeroed or kind == ObjectKind.FUNCTION else symbolic_contents(name)
        obj = MemoryObject(id=object_id, name=name, size=size, kind=kind, contents=contents)
        self._objects[object_id] = obj
        return obj

    def release(self, object_id: int) -> None:
        """Drop a stack object whose frame has returned."""
        self._objects.pop(object_id, None)

    def free(self, object_id: int) -> None:
        obj = self._objects[object_id]
        self._objects[object_id] = replace(obj, freed=True)

    def seal(self, object_id: int) -> None:
        """Mark an object read-only, e.g. a constant global after initialization."""
        self._objects[object_id] = replace(self._objects[object_id], read_only=True)

    def resolve(self, pointer: z3.BitVecRef, nbytes: int) -> list[Access]:
        """Enumerate the objects ``pointer`` may designate for an ``nbytes`` access."""
        object_part = pointer_object(pointer)
        offset = pointer_offset(pointer)

        if z3.is_bv_value(object_part):
            object_id = object_part.as_long()
            obj = self._objects.get(object_id)
            reason = self._invalid_reason(object_id, obj)
            if reason is not None:
                return [Access(None, offset, z3.BoolVal(True), z3.BoolVal(False), reason)]
            return [Access(object_id, offset, z3.BoolVal(True), _in_bounds(offset, nbytes, obj.size))]

        accesses: list[Access] = []
        excluded: list[z3.BoolRef] = []
        for obj in self._objects.values():
            if obj.kind == ObjectKind.FUNCTION or obj.freed or obj.size < nbytes:
                continue
            guard = object_part == z3.BitVecVal(obj.id, OBJECT_BITS)
            excluded.append(z3.Not(guard))
            accesses.append(Access(obj.id, offset, guard, _in_bounds(offset, nbytes, obj.size)))
        accesses.append(
            Access(
                None,
                offset,
                z3.And(*excluded) if excluded else z3.BoolVal(True),
                z3.BoolVal(False),
                "pointer does not refer to a live object",
            )
        )
        return accesses

    @staticmethod
    def _invalid_reason(object_id: int, obj: MemoryObject | None) -> str | None:
        if object_id == NULL_OBJECT:
            return "null pointer dereference"
        if obj is None:
            return f"dangling pointer to object {object_id}"
        if obj.kind == ObjectKind.FUNCTION:
            return f"data access through function pointer '{obj.name}'"
        if obj.freed:
            return f"use of freed object '{obj.name}'"
        return None

    def read(self, object_id: int, offset: z3.BitVecRef | int, nbytes: int) -> z3.BitVecRef:
        obj = self._objects[object_id]
        base = z3.BitVecVal(offset, OFFSET_BITS) if isinstance(offset, int) else offset
        items = [z3.Select(obj.contents, base + i) for i in range(nbytes)]
        if len(items) == 1:
            return z3.simplify(items[0])
        return z3.simplify(z3.Concat(*reversed(items)))

    def write(
        self,
        object_id: int,
        offset: z3.BitVecRef | int,
        expr: z3.BitVecRef,
        guard: z3.BoolRef | None = None,
    ) -> None:
        obj = self._objects[object_id]
        if expr.size() % 8:
            expr = z3.ZeroExt(8 - expr.size() % 8, expr)
        base = z3.BitVecVal(offset, OFFSET_BITS) if isinstance(offset, int) else offset
        contents = obj.contents
        for i in range(expr.size() // 8):
            contents = z3.Store(contents, base + i, z3.Extract(i * 8 + 7, i * 8, expr))
        if guard is not None:
            contents = z3.If(guard, contents, obj.contents)
        self._objects[object_id] = replace(obj, contents=z3.simplify(contents))

    def load(self, object_id: int, offset: z3.BitVecRef | int, ty: Type) -> SymbolicValue:
        if not ty.is_scalar():
            raise ExecutionError(f"Cannot load aggregate type {ty} as a single value")
        raw = self.read(object_id, offset, ty.size)
        if raw.size() != ty.bits:
            raw = z3.simplify(z3.Extract(ty.bits - 1, 0, raw))
        return SymbolicValue(raw, ty)

    def load_or_fresh(self, object_id: int, offset: z3.BitVecRef, ty: Type, in_bounds: z3.BoolRef) -> SymbolicValue:
        loaded = self.load(object_id, offset, ty)
        return SymbolicValue(z3.simplify(z3.If(in_bounds, loaded.expr, fresh("oob", ty).expr)), ty)

    def store(
        self,
        object_id: int,
        offset: z3.BitVecRef | int,
        value: SymbolicValue,
        guard: z3.BoolRef | None = None,
    ) -> None:
        if not value.type.is_scalar():
            raise ExecutionError(f"Cannot store aggregate type {value.type} as a single value")
        self.write(object_id, offset, value.expr, guard)

    def address_of(self, object_id: int, offset: int | z3.BitVecRef = 0) -> SymbolicValue:
        return SymbolicValue(make_pointer(object_id, offset), PTR)

    def copy(
        self,
        dst: int,
        dst_offset: int | z3.BitVecRef,
        src: int,
        src_offset: int | z3.BitVecRef,
        nbytes: int,
    ) -> None:
        data = [self.read(src, src_offset + i, 1) for i in range(nbytes)]
        for i, byte in enumerate(data):
            self.write(dst, dst_offset + i, byte)
