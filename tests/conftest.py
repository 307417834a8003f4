"""Shared helpers for loading the JSON IR fixtures."""
from __future__ import annotations

from pathlib import Path

import pytest

from ir_sym.link.linker import Project

FIXTURES = Path(__file__).parent / "fixtures"


def fixture_path(name: str) -> Path:
    return FIXTURES / f"{name}.json"


@pytest.fixture
def link():
    """Link fixture modules by name, e.g. ``link("call", "crossmod")``."""

    def _link(*names: str, hooks=()) -> Project:
        return Project.from_paths([fixture_path(name) for name in names], hooks=hooks)

    return _link
