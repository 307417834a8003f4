"""Linking of modules into a project with initialized global storage."""

from __future__ import annotations

from .linker import BUILTIN_FUNCTIONS, Project, Symbol

__all__ = ["BUILTIN_FUNCTIONS", "Project", "Symbol"]
