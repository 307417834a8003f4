"""Error hierarchy shared by the loader, linker and engine."""
from __future__ import annotations

__all__ = [
    "ConfigError",
    "DuplicateSymbolError",
    "ExecutionError",
    "IRSymError",
    "InitializerCycleError",
    "LayoutError",
    "LinkError",
    "LoadError",
    "ParseError",
    "QueryError",
    "UnresolvedSymbolError",
]


class IRSymError(Exception):
    """Base class for every error raised by ir-sym."""


class LoadError(IRSymError):
    """A module set cannot be turned into an executable project."""


class ParseError(LoadError, ValueError):
    """Malformed IR document."""


class LayoutError(LoadError):
    """A type has no well-defined ABI layout."""


class LinkError(LoadError):
    """Symbol resolution across modules failed."""


class UnresolvedSymbolError(LinkError):
    def __init__(self, symbol: str, module: str | None = None) -> None:
        where = f" (referenced from {module})" if module else ""
        super().__init__(f"Unresolved symbol '{symbol}'{where}")
        self.symbol = symbol
        self.module = module


class DuplicateSymbolError(LinkError):
    def __init__(self, symbol: str, first: str, second: str) -> None:
        super().__init__(f"Symbol '{symbol}' defined in both {first} and {second}")
        self.symbol = symbol


class InitializerCycleError(LinkError):
    def __init__(self, cycle: list[str]) -> None:
        super().__init__("Global initializers depend on each other's values: " + " -> ".join(cycle))
        self.cycle = cycle


class ConfigError(IRSymError, ValueError):
    """Invalid engine configuration."""


class QueryError(IRSymError):
    """The query does not match the linked project."""


class ExecutionError(IRSymError):
    """An instruction could not be executed on the current path."""
