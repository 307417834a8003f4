"""In-memory IR: modules, functions, globals and instructions."""
from __future__ import annotations

from dataclasses import dataclass, field

from .cfg import find_back_edges
from .opcodes import Opcode
from .types import StructType, Type

__all__ = [
    "AddressOf",
    "Aggregate",
    "BasicBlock",
    "CatchHandler",
    "ConstBinary",
    "ConstExpr",
    "ConstInt",
    "ConstNull",
    "Function",
    "GlobalRef",
    "GlobalVariable",
    "Instruction",
    "IntLiteral",
    "Module",
    "NullLiteral",
    "Operand",
    "Param",
    "Register",
    "ValueOf",
    "ZeroInit",
    "WILDCARD",
]

WILDCARD = "..."


@dataclass(slots=True, frozen=True)
class Register:
    name: str

    def __str__(self) -> str:
        return f"%{self.name}"


@dataclass(slots=True, frozen=True)
class GlobalRef:
    name: str

    def __str__(self) -> str:
        return f"@{self.name}"


@dataclass(slots=True, frozen=True)
class IntLiteral:
    value: int

    def __str__(self) -> str:
        return str(self.value)


@dataclass(slots=True, frozen=True)
class NullLiteral:
    def __str__(self) -> str:
        return "null"


Operand = Register | GlobalRef | IntLiteral | NullLiteral


@dataclass(slots=True, frozen=True)
class CatchHandler:
    type_name: str
    target: str
    bind: str | None = None

    def matches(self, thrown_type: str) -> bool:
        return self.type_name == WILDCARD or self.type_name == thrown_type


@dataclass(slots=True, frozen=True)
class Instruction:
    opcode: Opcode
    dest: str | None = None
    type: Type | None = None
    operands: tuple[Operand, ...] = ()
    predicate: str | None = None
    source_type: Type | None = None
    targets: tuple[str, ...] = ()
    cases: tuple[tuple[int, str], ...] = ()
    callee: Operand | None = None
    handlers: tuple[CatchHandler, ...] = ()
    incoming: tuple[tuple[str, Operand], ...] = ()
    mask: tuple[int, ...] = ()
    exception_type: str | None = None
    zeroed: bool = False

    def __str__(self) -> str:
        prefix = f"%{self.dest} = " if self.dest else ""
        rendered = ", ".join(str(op) for op in self.operands)
        return f"{prefix}{self.opcode.value} {rendered}".rstrip()


@dataclass(slots=True, frozen=True)
class BasicBlock:
    label: str
    instructions: tuple[Instruction, ...]


@dataclass(slots=True, frozen=True)
class Param:
    name: str
    type: Type


@dataclass(slots=True)
class Function:
    name: str
    params: tuple[Param, ...]
    return_type: Type
    blocks: dict[str, BasicBlock]
    module: str = ""
    inline: bool = False

    _back_edges: frozenset[tuple[str, str]] | None = field(default=None, init=False, repr=False)

    @property
    def entry(self) -> str:
        return next(iter(self.blocks))

    def block(self, label: str) -> BasicBlock:
        return self.blocks[label]

    @property
    def back_edges(self) -> frozenset[tuple[str, str]]:
        if self._back_edges is None:
            self._back_edges = find_back_edges(self)
        return self._back_edges

    @property
    def loop_headers(self) -> frozenset[str]:
        return frozenset(header for _, header in self.back_edges)


@dataclass(slots=True, frozen=True)
class ConstInt:
    value: int


@dataclass(slots=True, frozen=True)
class ConstNull:
    pass


@dataclass(slots=True, frozen=True)
class ZeroInit:
    pass


@dataclass(slots=True, frozen=True)
class Aggregate:
    items: tuple[ConstExpr, ...]


@dataclass(slots=True, frozen=True)
class AddressOf:
    symbol: str
    path: tuple[int, ...] = ()


@dataclass(slots=True, frozen=True)
class ValueOf:
    symbol: str
    path: tuple[int, ...] = ()


@dataclass(slots=True, frozen=True)
class ConstBinary:
    opcode: Opcode
    args: tuple[ConstExpr, ...]


ConstExpr = ConstInt | ConstNull | ZeroInit | Aggregate | AddressOf | ValueOf | ConstBinary


@dataclass(slots=True)
class GlobalVariable:
    name: str
    type: Type
    initializer: ConstExpr | None = None
    external: bool = False
    constant: bool = False
    module: str = ""


@dataclass(slots=True)
class Module:
    name: str
    functions: dict[str, Function] = field(default_factory=dict)
    globals: dict[str, GlobalVariable] = field(default_factory=dict)
    declarations: tuple[str, ...] = ()
    structs: dict[str, StructType] = field(default_factory=dict)

    def function_by_name(self, name: str) -> Function | None:
        return self.functions.get(name)
