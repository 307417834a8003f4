"""Report rendering for exploration results."""

from __future__ import annotations

from .generator import ReportGenerator

__all__ = ["ReportGenerator"]
