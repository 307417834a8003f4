"""Loader for the JSON IR interchange format produced by the front end."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from ..errors import LayoutError, ParseError
from .cfg import successors
from .module import (
    AddressOf,
    Aggregate,
    BasicBlock,
    CatchHandler,
    ConstBinary,
    ConstExpr,
    ConstInt,
    ConstNull,
    Function,
    GlobalRef,
    GlobalVariable,
    Instruction,
    IntLiteral,
    Module,
    NullLiteral,
    Operand,
    Param,
    Register,
    ValueOf,
    WILDCARD,
    ZeroInit,
)
from .opcodes import (
    BINARY_OPCODES,
    COMPARISON_PREDICATES,
    OPERAND_COUNTS,
    PRODUCES_VALUE,
    REDUCTION_OPERATORS,
    TERMINATOR_OPCODES,
    Opcode,
)
from .types import VOID, StructType, Type, VectorType, parse_type

__all__ = ["exception_tag", "load_module", "parse_module", "parse_operand"]


def parse_operand(raw: Any) -> Operand:
    if isinstance(raw, bool):
        return IntLiteral(int(raw))
    if isinstance(raw, int):
        return IntLiteral(raw)
    if isinstance(raw, str):
        text = raw.strip()
        if text == "null":
            return NullLiteral()
        if text.startswith("%") and len(text) > 1:
            return Register(text[1:])
        if text.startswith("@") and len(text) > 1:
            return GlobalRef(text[1:])
        try:
            return IntLiteral(int(text, 0))
        except ValueError:
            pass
    raise ParseError(f"Invalid operand: {raw!r}")


def exception_tag(text: str) -> str:
    """Canonical name used to match thrown values against catch clauses."""
    text = text.strip()
    if text == WILDCARD:
        return text
    try:
        return str(parse_type(text))
    except LayoutError:
        return text


class _ModuleReader:
    def __init__(self, payload: dict[str, Any], default_name: str) -> None:
        self.payload = payload
        self.name = str(payload.get("name", default_name))
        self._raw_structs = payload.get("structs", {})
        if not isinstance(self._raw_structs, dict):
            raise ParseError(f"{self.name}: 'structs' must be an object")
        self._structs: dict[str, StructType] = {}
        self._resolving: list[str] = []

    def resolve_struct(self, name: str) -> StructType:
        known = self._structs.get(name)
        if known is not None:
            return known
        if name in self._resolving:
            chain = " -> ".join([*self._resolving, name])
            raise LayoutError(f"{self.name}: struct contains itself by value: {chain}")
        raw = self._raw_structs.get(name)
        if raw is None:
            raise LayoutError(f"{self.name}: unknown struct type '%{name}'")
        packed = False
        if isinstance(raw, dict):
            packed = bool(raw.get("packed", False))
            raw = raw.get("fields", [])
        if not isinstance(raw, list):
            raise LayoutError(f"{self.name}: fields of struct '%{name}' must be a list")
        self._resolving.append(name)
        try:
            fields = tuple(self.type(item) for item in raw)
        finally:
            self._resolving.pop()
        struct = StructType(name, fields, packed=packed)
        self._structs[name] = struct
        return struct

    def type(self, text: Any) -> Type:
        if not isinstance(text, str):
            raise LayoutError(f"{self.name}: type must be a string, got {text!r}")
        return parse_type(text, self.resolve_struct)

    def read(self) -> Module:
        for struct_name in self._raw_structs:
            self.resolve_struct(str(struct_name))

        module = Module(name=self.name, structs=dict(self._structs))

        raw_declarations = self.payload.get("declarations", [])
        if not isinstance(raw_declarations, list):
            raise ParseError(f"{self.name}: 'declarations' must be a list")
        module.declarations = tuple(str(d).lstrip("@") for d in raw_declarations)

        for raw_global in self.payload.get("globals", []):
            variable = self.global_variable(raw_global)
            if variable.name in module.globals:
                raise ParseError(f"{self.name}: global '{variable.name}' defined twice")
            module.globals[variable.name] = variable

        for raw_function in self.payload.get("functions", []):
            function = self.function(raw_function)
            if function.name in module.functions or function.name in module.globals:
                raise ParseError(f"{self.name}: symbol '{function.name}' defined twice")
            module.functions[function.name] = function

        return module

    def global_variable(self, raw: Any) -> GlobalVariable:
        if not isinstance(raw, dict) or "name" not in raw or "type" not in raw:
            raise ParseError(f"{self.name}: global entries need 'name' and 'type': {raw!r}")
        name = str(raw["name"]).lstrip("@")
        external = bool(raw.get("external", False))
        if external and "init" in raw:
            raise ParseError(f"{self.name}: external global '{name}' cannot have an initializer")
        return GlobalVariable(
            name=name,
            type=self.type(raw["type"]),
            initializer=self.const(raw["init"]) if "init" in raw else None,
            external=external,
            constant=bool(raw.get("constant", False)),
            module=self.name,
        )

    def const(self, raw: Any) -> ConstExpr:
        if isinstance(raw, bool):
            return ConstInt(int(raw))
        if isinstance(raw, int):
            return ConstInt(raw)
        if raw == "null":
            return ConstNull()
        if isinstance(raw, list):
            return Aggregate(tuple(self.const(item) for item in raw))
        if isinstance(raw, dict):
            if raw.get("zero"):
                return ZeroInit()
            if "fields" in raw:
                return Aggregate(tuple(self.const(item) for item in raw["fields"]))
            if "addr" in raw:
                return AddressOf(str(raw["addr"]).lstrip("@"), self._path(raw.get("path", [])))
            if "ref" in raw:
                return ValueOf(str(raw["ref"]).lstrip("@"), self._path(raw.get("path", [])))
            if "op" in raw:
                try:
                    opcode = Opcode(raw["op"])
                except ValueError as exc:
                    raise ParseError(f"{self.name}: unknown constant operator {raw['op']!r}") from exc
                if opcode not in BINARY_OPCODES:
                    raise ParseError(f"{self.name}: '{opcode}' is not a constant operator")
                args = raw.get("args", [])
                if not isinstance(args, list) or len(args) != 2:
                    raise ParseError(f"{self.name}: constant '{opcode}' needs two args")
                return ConstBinary(opcode, tuple(self.const(arg) for arg in args))
        raise ParseError(f"{self.name}: invalid constant expression {raw!r}")

    def _path(self, raw: Any) -> tuple[int, ...]:
        if not isinstance(raw, list) or not all(isinstance(i, int) and not isinstance(i, bool) for i in raw):
            raise ParseError(f"{self.name}: constant path must be a list of integers, got {raw!r}")
        return tuple(raw)

    def function(self, raw: Any) -> Function:
        if not isinstance(raw, dict) or "name" not in raw:
            raise ParseError(f"{self.name}: function entries need a 'name'")
        name = str(raw["name"]).lstrip("@")
        params: list[Param] = []
        for item in raw.get("params", []):
            if not isinstance(item, dict) or "name" not in item or "type" not in item:
                raise ParseError(f"{self.name}:{name}: parameters need 'name' and 'type'")
            params.append(Param(str(item["name"]).lstrip("%"), self.type(item["type"])))

        blocks: dict[str, BasicBlock] = {}
        raw_blocks = raw.get("blocks", [])
        if not isinstance(raw_blocks, list) or not raw_blocks:
            raise ParseError(f"{self.name}:{name}: function has no blocks")
        for raw_block in raw_blocks:
            label = str(raw_block.get("label", ""))
            if not label or label in blocks:
                raise ParseError(f"{self.name}:{name}: missing or duplicate block label {label!r}")
            instructions = tuple(
                self.instruction(item, f"{name}:{label}") for item in raw_block.get("instructions", [])
            )
            if not instructions or instructions[-1].opcode not in TERMINATOR_OPCODES:
                raise ParseError(f"{self.name}:{name}:{label}: block does not end in a terminator")
            blocks[label] = BasicBlock(label, instructions)

        for block in blocks.values():
            for target in successors(block):
                if target not in blocks:
                    raise ParseError(f"{self.name}:{name}:{block.label}: branch to unknown block '{target}'")
            for instruction in block.instructions:
                for source, _ in instruction.incoming:
                    if source not in blocks:
                        raise ParseError(f"{self.name}:{name}:{block.label}: phi names unknown block '{source}'")

        return Function(
            name=name,
            params=tuple(params),
            return_type=self.type(raw.get("return", "void")),
            blocks=blocks,
            module=self.name,
            inline=bool(raw.get("inline", False)),
        )

    def instruction(self, raw: Any, where: str) -> Instruction:
        if not isinstance(raw, dict) or "op" not in raw:
            raise ParseError(f"{self.name}:{where}: instruction needs an 'op': {raw!r}")
        try:
            opcode = Opcode(raw["op"])
        except ValueError as exc:
            raise ParseError(f"{self.name}:{where}: unknown opcode {raw['op']!r}") from exc

        raw_args = raw.get("args", [])
        if not isinstance(raw_args, list):
            raise ParseError(f"{self.name}:{where}: 'args' must be a list")
        operands = tuple(parse_operand(arg) for arg in raw_args)
        expected = OPERAND_COUNTS.get(opcode)
        if expected is not None and len(operands) != expected:
            raise ParseError(f"{self.name}:{where}: '{opcode}' takes {expected} operands, got {len(operands)}")

        dest = raw.get("dest")
        if dest is not None:
            dest = str(dest).lstrip("%")
        if opcode in PRODUCES_VALUE and not dest:
            raise ParseError(f"{self.name}:{where}: '{opcode}' needs a 'dest'")

        ty = self.type(raw["type"]) if "type" in raw else None
        fields: dict[str, Any] = {}

        if opcode in BINARY_OPCODES or opcode in (
            Opcode.CMP,
            Opcode.SELECT,
            Opcode.PHI,
            Opcode.ALLOCA,
            Opcode.LOAD,
            Opcode.STORE,
            Opcode.GEP,
            Opcode.CAST,
            Opcode.SWITCH,
            Opcode.THROW,
        ):
            if ty is None:
                raise ParseError(f"{self.name}:{where}: '{opcode}' needs a 'type'")

        if opcode in (Opcode.EXTRACTELEMENT, Opcode.INSERTELEMENT, Opcode.SHUFFLE, Opcode.REDUCE):
            if not isinstance(ty, VectorType):
                raise ParseError(f"{self.name}:{where}: '{opcode}' needs a vector 'type'")

        if opcode == Opcode.CMP:
            predicate = raw.get("pred")
            if predicate not in COMPARISON_PREDICATES:
                raise ParseError(f"{self.name}:{where}: invalid comparison predicate {predicate!r}")
            fields["predicate"] = predicate
        elif opcode == Opcode.REDUCE:
            predicate = raw.get("pred")
            if predicate not in REDUCTION_OPERATORS:
                raise ParseError(f"{self.name}:{where}: invalid reduction operator {predicate!r}")
            fields["predicate"] = predicate
        elif opcode == Opcode.CAST:
            if "from" not in raw:
                raise ParseError(f"{self.name}:{where}: 'cast' needs a 'from' type")
            fields["source_type"] = self.type(raw["from"])
        elif opcode == Opcode.PHI:
            incoming = raw.get("incoming")
            if not isinstance(incoming, dict) or not incoming:
                raise ParseError(f"{self.name}:{where}: 'phi' needs an 'incoming' object")
            fields["incoming"] = tuple((str(label), parse_operand(value)) for label, value in incoming.items())
        elif opcode == Opcode.ALLOCA:
            fields["zeroed"] = bool(raw.get("zero", False))
        elif opcode == Opcode.BR:
            fields["targets"] = (self._label(raw, "target", where),)
        elif opcode == Opcode.CONDBR:
            fields["targets"] = (self._label(raw, "then", where), self._label(raw, "else", where))
        elif opcode == Opcode.SWITCH:
            raw_cases = raw.get("cases", {})
            if not isinstance(raw_cases, dict):
                raise ParseError(f"{self.name}:{where}: 'cases' must be an object")
            try:
                fields["cases"] = tuple((int(value, 0), str(label)) for value, label in raw_cases.items())
            except (TypeError, ValueError) as exc:
                raise ParseError(f"{self.name}:{where}: switch case values must be integers") from exc
            fields["targets"] = (self._label(raw, "default", where),)
        elif opcode == Opcode.CALL:
            if "callee" not in raw:
                raise ParseError(f"{self.name}:{where}: 'call' needs a 'callee'")
            fields["callee"] = parse_operand(raw["callee"])
            if ty is None:
                ty = VOID
            if dest and ty == VOID:
                raise ParseError(f"{self.name}:{where}: void call cannot have a 'dest'")
        elif opcode == Opcode.RET:
            if len(operands) > 1:
                raise ParseError(f"{self.name}:{where}: 'ret' takes at most one operand")
        elif opcode == Opcode.TRY:
            handlers: list[CatchHandler] = []
            for item in raw.get("handlers", []):
                if not isinstance(item, dict) or "target" not in item:
                    raise ParseError(f"{self.name}:{where}: catch handlers need a 'target'")
                bind = item.get("bind")
                handlers.append(
                    CatchHandler(
                        type_name=exception_tag(str(item.get("type", WILDCARD))),
                        target=str(item["target"]),
                        bind=str(bind).lstrip("%") if bind else None,
                    )
                )
            if not handlers:
                raise ParseError(f"{self.name}:{where}: 'try' needs at least one handler")
            fields["handlers"] = tuple(handlers)
        elif opcode == Opcode.THROW:
            fields["exception_type"] = exception_tag(str(raw.get("tag", raw["type"])))
        elif opcode == Opcode.SHUFFLE:
            mask = raw.get("mask")
            if not isinstance(mask, list) or not mask or not all(isinstance(m, int) for m in mask):
                raise ParseError(f"{self.name}:{where}: 'shuffle' needs an integer 'mask'")
            fields["mask"] = tuple(mask)

        return Instruction(opcode=opcode, dest=dest, type=ty, operands=operands, **fields)

    def _label(self, raw: dict[str, Any], key: str, where: str) -> str:
        label = raw.get(key)
        if not isinstance(label, str) or not label:
            raise ParseError(f"{self.name}:{where}: missing branch label '{key}'")
        return label


def parse_module(raw_json: str, default_name: str = "module") -> Module:
    """Parse one module document into typed IR structures."""
    try:
        payload = json.loads(raw_json)
    except json.JSONDecodeError as exc:
        raise ParseError(f"Invalid module JSON: {exc}") from exc

    if not isinstance(payload, dict):
        raise ParseError("Module root must be an object")
    return _ModuleReader(payload, default_name).read()


def load_module(path: str | Path) -> Module:
    path = Path(path)
    return parse_module(path.read_text(), default_name=path.stem)
