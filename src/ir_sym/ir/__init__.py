"""IR data model and the JSON interchange loader."""

from __future__ import annotations

from .module import Function, GlobalVariable, Instruction, Module
from .opcodes import Opcode
from .parser import load_module, parse_module
from .types import parse_type

__all__ = [
    "Function",
    "GlobalVariable",
    "Instruction",
    "Module",
    "Opcode",
    "load_module",
    "parse_module",
    "parse_type",
]
