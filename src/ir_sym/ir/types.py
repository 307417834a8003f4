"""IR types and their x86-64 System V layout."""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from ..errors import LayoutError

__all__ = [
    "POINTER_BYTES",
    "ArrayType",
    "IntType",
    "PointerType",
    "StructType",
    "Type",
    "VectorType",
    "VoidType",
    "I1",
    "I8",
    "I32",
    "I64",
    "PTR",
    "VOID",
    "parse_type",
]

POINTER_BYTES = 8


class Type:
    """Base class for IR types."""

    @property
    def size(self) -> int:
        raise NotImplementedError

    @property
    def align(self) -> int:
        raise NotImplementedError

    @property
    def bits(self) -> int:
        return self.size * 8

    def is_scalar(self) -> bool:
        return False


@dataclass(slots=True, frozen=True)
class VoidType(Type):
    @property
    def size(self) -> int:
        return 0

    @property
    def align(self) -> int:
        return 1

    def __str__(self) -> str:
        return "void"


@dataclass(slots=True, frozen=True)
class IntType(Type):
    width: int
    signed: bool = True

    def __post_init__(self) -> None:
        if self.width not in (1, 8, 16, 32, 64, 128):
            raise LayoutError(f"Unsupported integer width {self.width}")

    @property
    def size(self) -> int:
        return max(1, self.width // 8)

    @property
    def align(self) -> int:
        return self.size

    @property
    def bits(self) -> int:
        return self.width

    def is_scalar(self) -> bool:
        return True

    def __str__(self) -> str:
        return f"{'i' if self.signed or self.width == 1 else 'u'}{self.width}"


@dataclass(slots=True, frozen=True)
class PointerType(Type):
    @property
    def size(self) -> int:
        return POINTER_BYTES

    @property
    def align(self) -> int:
        return POINTER_BYTES

    def is_scalar(self) -> bool:
        return True

    def __str__(self) -> str:
        return "ptr"


@dataclass(slots=True, frozen=True)
class ArrayType(Type):
    element: Type
    count: int

    def __post_init__(self) -> None:
        if self.count <= 0:
            raise LayoutError(f"Array length must be positive, got {self.count}")

    @property
    def size(self) -> int:
        return self.element.size * self.count

    @property
    def align(self) -> int:
        return self.element.align

    def __str__(self) -> str:
        return f"[{self.count} x {self.element}]"


@dataclass(slots=True, frozen=True)
class VectorType(Type):
    element: IntType
    count: int

    def __post_init__(self) -> None:
        if self.count <= 0:
            raise LayoutError(f"Vector length must be positive, got {self.count}")
        if not isinstance(self.element, IntType) or self.element.width < 8:
            raise LayoutError(f"Vector elements must be byte-sized integers, got {self.element}")

    @property
    def size(self) -> int:
        return self.element.size * self.count

    @property
    def align(self) -> int:
        align = 1
        while align < self.size:
            align <<= 1
        return align

    def is_scalar(self) -> bool:
        return True

    def __str__(self) -> str:
        return f"<{self.count} x {self.element}>"


@dataclass(slots=True, frozen=True)
class StructType(Type):
    name: str | None
    fields: tuple[Type, ...]
    packed: bool = False
    offsets: tuple[int, ...] = field(init=False, compare=False, repr=False)
    _size: int = field(init=False, compare=False, repr=False)
    _align: int = field(init=False, compare=False, repr=False)

    def __post_init__(self) -> None:
        offsets: list[int] = []
        cursor = 0
        max_align = 1
        for member in self.fields:
            member_align = 1 if self.packed else member.align
            cursor = _round_up(cursor, member_align)
            offsets.append(cursor)
            cursor += member.size
            max_align = max(max_align, member_align)
        object.__setattr__(self, "offsets", tuple(offsets))
        object.__setattr__(self, "_size", _round_up(cursor, max_align))
        object.__setattr__(self, "_align", max_align)

    @property
    def size(self) -> int:
        return self._size

    @property
    def align(self) -> int:
        return self._align

    def field_offset(self, index: int) -> int:
        if not 0 <= index < len(self.fields):
            raise LayoutError(f"Struct {self} has no field {index}")
        return self.offsets[index]

    def __str__(self) -> str:
        if self.name:
            return f"%{self.name}"
        return "{" + ", ".join(str(f) for f in self.fields) + "}"


def _round_up(value: int, align: int) -> int:
    return (value + align - 1) // align * align


I1 = IntType(1, signed=False)
I8 = IntType(8)
I32 = IntType(32)
I64 = IntType(64)
PTR = PointerType()
VOID = VoidType()

_SCALARS: dict[str, Type] = {
    "void": VOID,
    "ptr": PTR,
    "i1": I1,
    "bool": I1,
}
for _width in (8, 16, 32, 64, 128):
    _SCALARS[f"i{_width}"] = IntType(_width, signed=True)
    _SCALARS[f"u{_width}"] = IntType(_width, signed=False)


class _TypeReader:
    def __init__(self, text: str, resolve: Callable[[str], StructType]) -> None:
        self._text = text
        self._pos = 0
        self._resolve = resolve

    def _skip(self) -> None:
        while self._pos < len(self._text) and self._text[self._pos].isspace():
            self._pos += 1

    def _peek(self) -> str:
        self._skip()
        return self._text[self._pos] if self._pos < len(self._text) else ""

    def _expect(self, token: str) -> None:
        self._skip()
        if not self._text.startswith(token, self._pos):
            raise LayoutError(f"Expected '{token}' at column {self._pos} in type '{self._text}'")
        self._pos += len(token)

    def _word(self) -> str:
        self._skip()
        start = self._pos
        while self._pos < len(self._text) and (self._text[self._pos].isalnum() or self._text[self._pos] in "_.$"):
            self._pos += 1
        if start == self._pos:
            raise LayoutError(f"Unexpected character at column {start} in type '{self._text}'")
        return self._text[start : self._pos]

    def read(self) -> Type:
        ty = self._read_type()
        self._skip()
        if self._pos != len(self._text):
            raise LayoutError(f"Trailing characters in type '{self._text}'")
        return ty

    def _read_type(self) -> Type:
        head = self._peek()
        if head == "[":
            self._expect("[")
            count = self._count()
            self._expect("x")
            element = self._read_type()
            self._expect("]")
            return ArrayType(element, count)
        if head == "<":
            self._expect("<")
            count = self._count()
            self._expect("x")
            element = self._read_type()
            self._expect(">")
            if not isinstance(element, IntType):
                raise LayoutError(f"Vector elements must be integers in '{self._text}'")
            return VectorType(element, count)
        if head == "{":
            self._expect("{")
            members: list[Type] = []
            while self._peek() != "}":
                members.append(self._read_type())
                if self._peek() == ",":
                    self._expect(",")
            self._expect("}")
            return StructType(None, tuple(members))
        if head == "%":
            self._expect("%")
            return self._resolve(self._word())
        word = self._word()
        scalar = _SCALARS.get(word)
        if scalar is None:
            raise LayoutError(f"Unknown type '{word}' in '{self._text}'")
        return scalar

    def _count(self) -> int:
        word = self._word()
        if not word.isdigit():
            raise LayoutError(f"Expected element count, got '{word}' in '{self._text}'")
        return int(word)


def _no_structs(name: str) -> StructType:
    raise LayoutError(f"Unknown struct type '%{name}'")


def parse_type(text: str, resolve: Callable[[str], StructType] | None = None) -> Type:
    """Parse a type string such as ``[10 x i32]`` or ``{u8, %Inner}``."""
    if not isinstance(text, str) or not text.strip():
        raise LayoutError(f"Invalid type specification: {text!r}")
    return _TypeReader(text, resolve or _no_structs).read()
