"""Report generator - JSON and Markdown output."""
from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

import z3

from ..engine.outcomes import ExplorationResult, Outcome, OutcomeKind
from ..engine.solver import ConstraintSolver
from ..engine.values import SymbolicValue

__all__ = ["ReportGenerator"]


class ReportGenerator:
    _KIND_RANK: dict[OutcomeKind, int] = {
        OutcomeKind.MEMORY_ERROR: 0,
        OutcomeKind.UNCAUGHT_EXCEPTION: 1,
        OutcomeKind.ABORT: 2,
        OutcomeKind.ERROR: 3,
        OutcomeKind.BOUND_EXCEEDED: 4,
        OutcomeKind.RETURN: 5,
    }

    def __init__(self, project_name: str = "unknown", solver: ConstraintSolver | None = None) -> None:
        self.project_name = project_name
        self.solver = solver or ConstraintSolver()

    def _sorted_outcomes(self, outcomes: list[Outcome]) -> list[Outcome]:
        return sorted(outcomes, key=lambda outcome: (self._KIND_RANK.get(outcome.kind, 99), outcome.steps))

    @staticmethod
    def _value(value: SymbolicValue | None) -> int | str | None:
        if value is None:
            return None
        concrete = value.as_int()
        return concrete if concrete is not None else str(z3.simplify(value.expr))

    def _outcome_to_dict(self, outcome: Outcome, result: ExplorationResult) -> dict[str, Any]:
        return {
            "kind": outcome.kind.value,
            "description": outcome.describe(),
            "return_value": self._value(outcome.return_value),
            "exception_type": outcome.exception_type,
            "payload": self._value(outcome.payload),
            "bound": str(outcome.bound) if outcome.bound else None,
            "message": outcome.message,
            "path_condition": str(outcome.condition),
            "example": self.solver.example(outcome.path_condition, result.argument_terms()),
            "trace": list(outcome.trace),
            "watchpoints": [str(event) for event in outcome.watch_events],
            "steps": outcome.steps,
        }

    def to_dict(self, result: ExplorationResult) -> dict[str, Any]:
        """Serialize an exploration result into a structured report dictionary."""
        outcomes = self._sorted_outcomes(result.outcomes)
        by_kind = {kind.value: 0 for kind in OutcomeKind}
        for outcome in outcomes:
            by_kind[outcome.kind.value] += 1
        stats = result.stats
        return {
            "project": self.project_name,
            "function": result.function,
            "timestamp": datetime.now(UTC).isoformat(),
            "summary": by_kind,
            "partial": result.partial,
            "stop_reason": result.stop_reason.value,
            "statistics": {
                "steps": stats.steps,
                "forks": stats.forks,
                "pruned": stats.pruned,
                "solver_queries": stats.solver_queries,
                "solver_unknown": stats.solver_unknown,
                "dropped": stats.dropped,
            },
            "total": len(outcomes),
            "outcomes": [self._outcome_to_dict(outcome, result) for outcome in outcomes],
        }

    def to_json(self, result: ExplorationResult) -> str:
        """Return the report as a pretty-printed JSON string."""
        return json.dumps(self.to_dict(result), indent=2)

    @staticmethod
    def _markdown_table(headers: list[str], rows: list[list[str]]) -> list[str]:
        sep = "|".join("-" * max(len(h), 3) for h in headers)
        lines = [
            "| " + " | ".join(headers) + " |",
            "|" + sep + "|",
        ]
        for row in rows:
            lines.append("| " + " | ".join(row) + " |")
        return lines

    def to_markdown(self, result: ExplorationResult) -> str:
        """Render the report as a Markdown document."""
        d = self.to_dict(result)
        lines = [
            f"# Exploration Report: {self.project_name} / {d['function']}",
            f"\nGenerated: {d['timestamp']}\n",
            "## Summary\n",
        ]
        lines.extend(self._markdown_table(
            ["Outcome", "Count"],
            [[kind.value, str(d["summary"][kind.value])] for kind in OutcomeKind],
        ))
        lines.append(f"\n**Total outcomes: {d['total']}**\n")
        if d["partial"]:
            lines.append(f"> Exploration stopped early ({d['stop_reason']}); results are partial.\n")
        stats = d["statistics"]
        lines.append(f"- **Steps:** {stats['steps']}")
        lines.append(f"- **Forks:** {stats['forks']}")
        lines.append(f"- **Pruned paths:** {stats['pruned']}")
        lines.append(f"- **Solver queries:** {stats['solver_queries']} ({stats['solver_unknown']} unknown)")
        lines.append("")
        lines.append("## Outcomes\n")
        for i, o in enumerate(d["outcomes"], 1):
            lines.append(f"### {i}. {o['description']}")
            lines.append(f"\n- **Kind:** {o['kind']}")
            lines.append(f"- **Path condition:** `{o['path_condition']}`")
            if o["example"]:
                rendered = ", ".join(f"{name}={value}" for name, value in o["example"].items())
                lines.append(f"- **Example input:** {rendered}")
            if o["message"] and o["kind"] != OutcomeKind.RETURN.value:
                lines.append(f"- **Detail:** {o['message']}")
            lines.append(f"- **Blocks:** {' -> '.join(o['trace'])}")
            if o["watchpoints"]:
                lines.append(f"- **Watchpoints:** {'; '.join(o['watchpoints'])}")
            lines.append("")
        return "\n".join(lines)
