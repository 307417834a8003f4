"""Tests for report output consistency."""
from __future__ import annotations

import json

from ir_sym.config import Config, Watchpoint
from ir_sym.engine.explorer import PathExplorer, Query
from ir_sym.report.generator import ReportGenerator


def _explore(project, name, args=()):
    explorer = PathExplorer(project)
    return explorer, explorer.explore(Query(name, list(args)))


def test_report_summary_counts(link):
    explorer, result = _explore(link("memory"), "abort_path")
    report = ReportGenerator("memory", explorer.solver).to_dict(result)

    assert report["project"] == "memory"
    assert report["function"] == "abort_path"
    assert report["summary"]["abort"] == 1
    assert report["summary"]["return"] == 1
    assert report["summary"]["memory_error"] == 0
    assert report["total"] == 2
    assert report["partial"] is False
    assert report["stop_reason"] == "completed"


def test_report_orders_failures_first_with_examples(link):
    explorer, result = _explore(link("memory"), "abort_path")
    outcomes = ReportGenerator("memory", explorer.solver).to_dict(result)["outcomes"]

    assert [o["kind"] for o in outcomes] == ["abort", "return"]
    assert outcomes[0]["example"] == {"x": 42}
    assert outcomes[0]["message"] == "abort() called"
    assert outcomes[1]["return_value"] == 0
    assert outcomes[1]["example"]["x"] != 42
    assert outcomes[1]["trace"] == ["abort_path:entry", "abort_path:ok"]


def test_report_renders_exception_payload(link):
    explorer, result = _explore(link("throwcatch"), "throw_uncaught", [4])
    (outcome,) = ReportGenerator("throwcatch", explorer.solver).to_dict(result)["outcomes"]

    assert outcome["kind"] == "uncaught_exception"
    assert outcome["exception_type"] == "i32"
    assert outcome["payload"] == 20
    assert outcome["return_value"] is None


def test_report_symbolic_return_value_is_an_expression(link):
    explorer, result = _explore(link("basic"), "one_arg")
    (outcome,) = ReportGenerator("basic", explorer.solver).to_dict(result)["outcomes"]

    assert isinstance(outcome["return_value"], str)
    assert "a" in outcome["return_value"]


def test_report_json_round_trips(link):
    explorer, result = _explore(link("loop"), "while_loop", [100])
    data = json.loads(ReportGenerator("loop", explorer.solver).to_json(result))

    assert data["summary"]["bound_exceeded"] == 1
    assert data["outcomes"][0]["bound"] == "loop bound at while_loop:header"


def test_markdown_report_sections(link):
    explorer, result = _explore(link("memory"), "abort_path")
    markdown = ReportGenerator("memory", explorer.solver).to_markdown(result)

    assert markdown.startswith("# Exploration Report: memory / abort_path")
    assert "## Summary" in markdown
    assert "| abort | 1 |" in markdown
    assert "**Total outcomes: 2**" in markdown
    assert "### 1. abort" in markdown
    assert "- **Example input:** x=42" in markdown
    assert "- **Detail:** abort() called" in markdown
    assert "stopped early" not in markdown


def test_report_lists_watchpoint_hits(link):
    explorer = PathExplorer(link("globals"), Config(watchpoints={"g3": Watchpoint("global3", size=4)}))
    result = explorer.explore(Query("modify_global", [2]))
    generator = ReportGenerator("globals", explorer.solver)
    (outcome,) = generator.to_dict(result)["outcomes"]

    assert outcome["watchpoints"] == ["g3: store at modify_global:entry", "g3: load at modify_global:entry"]
    assert "- **Watchpoints:** g3: store at modify_global:entry; g3: load" in generator.to_markdown(result)
