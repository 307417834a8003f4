"""Sample exploration script demonstrating programmatic usage."""
from pathlib import Path

from ir_sym.config import Config
from ir_sym.engine.explorer import PathExplorer, Query
from ir_sym.engine.queries import find_zero_of_func, possible_return_values
from ir_sym.link.linker import Project
from ir_sym.report.generator import ReportGenerator

FIXTURES = Path(__file__).resolve().parent.parent / "tests" / "fixtures"


def demo_with_fixture_modules():
    """Link two modules, query a few functions and print a report."""
    project = Project.from_paths([FIXTURES / "crossmod.json", FIXTURES / "call.json", FIXTURES / "globals.json"])
    print(f"Linked {len(project.functions)} functions and {len(project.globals)} globals")

    zero = find_zero_of_func(project, "cross_module_simple_caller")
    print(f"cross_module_simple_caller returns 0 for x={zero[0]}")

    values = possible_return_values(project, "recursive_simple", [1])
    print(f"recursive_simple(1) can finish as: {sorted(map(str, values))}")

    explorer = PathExplorer(project, Config(loop_bound=4))
    result = explorer.explore(Query("conditional_caller"))
    print(f"Explored {len(result.outcomes)} paths")

    gen = ReportGenerator("crossmod", explorer.solver)
    print(gen.to_markdown(result))


if __name__ == "__main__":
    demo_with_fixture_modules()
