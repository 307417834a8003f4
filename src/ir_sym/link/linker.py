"""Resolve independently compiled modules into one symbol space."""
from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from ..errors import DuplicateSymbolError, LinkError, QueryError, UnresolvedSymbolError
from ..ir.module import AddressOf, Aggregate, ConstBinary, ConstExpr, Function, GlobalRef, GlobalVariable, Module
from ..ir.parser import load_module
from ..engine.memory import Memory, ObjectKind
from .initializers import evaluate_initializers

__all__ = ["BUILTIN_FUNCTIONS", "Project", "Symbol"]

logger = logging.getLogger(__name__)

BUILTIN_FUNCTIONS: frozenset[str] = frozenset(
    {"malloc", "calloc", "realloc", "free", "memset", "memcpy", "memmove", "abort", "exit"}
)


@dataclass(slots=True, frozen=True)
class Symbol:
    name: str
    kind: str
    object_id: int
    size: int
    module: str


class Project:
    """A linked set of modules with pre-allocated, initialized global storage."""

    def __init__(
        self,
        modules: list[Module],
        functions: dict[str, Function],
        globals: dict[str, GlobalVariable],
        symbols: dict[str, Symbol],
        address_taken: frozenset[str],
        memory: Memory,
    ) -> None:
        self.modules = modules
        self.functions = functions
        self.globals = globals
        self.symbols = symbols
        self.address_taken = address_taken
        self._memory = memory
        self.callee_by_id: dict[int, str] = {
            symbol.object_id: symbol.name for symbol in symbols.values() if symbol.kind != "global"
        }

    @classmethod
    def link(cls, modules: Iterable[Module], hooks: Iterable[str] = ()) -> Project:
        """Link ``modules``; ``hooks`` names extra functions provided at run time."""
        modules = list(modules)
        hooked = BUILTIN_FUNCTIONS | frozenset(hooks)
        functions: dict[str, Function] = {}
        globals_: dict[str, GlobalVariable] = {}
        owner: dict[str, str] = {}

        for module in modules:
            for name, function in module.functions.items():
                if name in owner:
                    raise DuplicateSymbolError(name, owner[name], module.name)
                owner[name] = module.name
                functions[name] = function
            for name, variable in module.globals.items():
                if variable.external:
                    continue
                if name in owner:
                    raise DuplicateSymbolError(name, owner[name], module.name)
                owner[name] = module.name
                globals_[name] = variable

        for module in modules:
            for name, variable in module.globals.items():
                if not variable.external:
                    continue
                definition = globals_.get(name)
                if definition is None:
                    raise UnresolvedSymbolError(name, module.name)
                if definition.type.size != variable.type.size:
                    raise LinkError(
                        f"External global '{name}' in {module.name} has size {variable.type.size}, "
                        f"but its definition in {definition.module} has size {definition.type.size}"
                    )
            for name in module.declarations:
                if name not in functions and name not in globals_ and name not in hooked:
                    raise UnresolvedSymbolError(name, module.name)

        referenced, address_taken = _scan_references(modules)
        for name, module_name in referenced.items():
            if name not in functions and name not in globals_ and name not in hooked:
                raise UnresolvedSymbolError(name, module_name)

        memory = Memory()
        symbols: dict[str, Symbol] = {}
        for name, variable in globals_.items():
            size = variable.type.size
            obj = memory.allocate(
                size,
                name=name,
                kind=ObjectKind.GLOBAL,
                zeroed=True,
            )
            symbols[name] = Symbol(name, "global", obj.id, size, variable.module)
        for name, function in functions.items():
            obj = memory.allocate(0, name=name, kind=ObjectKind.FUNCTION)
            symbols[name] = Symbol(name, "function", obj.id, 0, function.module)
        for name in sorted((set(referenced) | _declared(modules)) & hooked - set(functions) - set(globals_)):
            obj = memory.allocate(0, name=name, kind=ObjectKind.FUNCTION)
            symbols[name] = Symbol(name, "hook", obj.id, 0, "<builtin>")
        for symbol in symbols.values():
            logger.debug("Resolved %s %s -> object %d (%s)", symbol.kind, symbol.name, symbol.object_id, symbol.module)

        logger.info("Linked %d module(s): %d function(s), %d global(s)", len(modules), len(functions), len(globals_))
        evaluate_initializers(globals_, symbols, memory)
        for name in globals_:
            if globals_[name].constant:
                memory.seal(symbols[name].object_id)
        return cls(
            modules,
            functions,
            globals_,
            symbols,
            frozenset(name for name in address_taken if name in symbols and symbols[name].kind != "global"),
            memory,
        )

    @classmethod
    def from_paths(cls, paths: Iterable[str | Path], hooks: Iterable[str] = ()) -> Project:
        return cls.link((load_module(path) for path in paths), hooks)

    def initial_memory(self) -> Memory:
        return self._memory.fork()

    def function(self, name: str) -> Function:
        function = self.functions.get(name)
        if function is None:
            raise QueryError(f"No function named '{name}' in the linked project")
        return function

    def object_id(self, name: str) -> int:
        symbol = self.symbols.get(name)
        if symbol is None:
            raise UnresolvedSymbolError(name)
        return symbol.object_id


def _declared(modules: list[Module]) -> set[str]:
    return {name for module in modules for name in module.declarations}


def _scan_references(modules: list[Module]) -> tuple[dict[str, str], set[str]]:
    """Map each referenced symbol to a referencing module; collect address-taken names."""
    referenced: dict[str, str] = {}
    address_taken: set[str] = set()
    for module in modules:
        for function in module.functions.values():
            for block in function.blocks.values():
                for instruction in block.instructions:
                    if isinstance(instruction.callee, GlobalRef):
                        referenced.setdefault(instruction.callee.name, module.name)
                    for operand in instruction.operands:
                        if isinstance(operand, GlobalRef):
                            referenced.setdefault(operand.name, module.name)
                            address_taken.add(operand.name)
                    for _, operand in instruction.incoming:
                        if isinstance(operand, GlobalRef):
                            referenced.setdefault(operand.name, module.name)
                            address_taken.add(operand.name)
        for variable in module.globals.values():
            if variable.initializer is not None:
                for name in _addresses(variable.initializer):
                    referenced.setdefault(name, module.name)
                    address_taken.add(name)
    return referenced, address_taken


def _addresses(expr: ConstExpr) -> list[str]:
    if isinstance(expr, AddressOf):
        return [expr.symbol]
    if isinstance(expr, Aggregate | ConstBinary):
        items = expr.items if isinstance(expr, Aggregate) else expr.args
        return [name for item in items for name in _addresses(item)]
    return []

