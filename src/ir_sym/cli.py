"""CLI entry point for ir-sym."""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterable
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .config import Config, Strategy
from .engine.explorer import ArgSpec, Buffer, PathExplorer, Query, Symbolic
from .engine.outcomes import OutcomeKind
from .engine.queries import find_zero_of_func
from .errors import ConfigError, LoadError, QueryError
from .link.linker import Project
from .report.generator import ReportGenerator

console = Console()

_KIND_COLORS: dict[OutcomeKind, str] = {
    OutcomeKind.RETURN: "green",
    OutcomeKind.UNCAUGHT_EXCEPTION: "yellow",
    OutcomeKind.BOUND_EXCEEDED: "blue",
    OutcomeKind.ABORT: "magenta",
    OutcomeKind.MEMORY_ERROR: "red",
    OutcomeKind.ERROR: "bright_red",
}


def _parse_arg_specs(specs: Iterable[str]) -> list[ArgSpec]:
    parsed: list[ArgSpec] = []
    for raw_spec in specs:
        text = raw_spec.strip().lower()
        if text in ("sym", "symbolic"):
            parsed.append(Symbolic())
        elif text.startswith("buf:"):
            try:
                size = int(text[4:], 0)
            except ValueError as exc:
                raise click.BadParameter(f"Invalid buffer size in --arg '{raw_spec}'.") from exc
            if size < 0:
                raise click.BadParameter(f"Buffer size in --arg '{raw_spec}' must be >= 0.")
            parsed.append(Buffer(size))
        elif text == "default":
            parsed.append(None)
        else:
            try:
                parsed.append(int(text, 0))
            except ValueError as exc:
                raise click.BadParameter(
                    f"Invalid --arg value '{raw_spec}'. Expected an integer, 'sym', 'buf:<size>' or 'default'."
                ) from exc
    return parsed


def _configure_logging(verbose: int) -> None:
    level = logging.WARNING if verbose == 0 else logging.INFO if verbose == 1 else logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _load(modules: tuple[str, ...], config: Config) -> Project:
    try:
        return Project.from_paths(modules, hooks=config.function_hooks)
    except LoadError as exc:
        console.print(f"[red]Failed to load modules: {exc}[/]")
        sys.exit(1)


def _build_config(config_file: str | None, **overrides) -> Config:
    try:
        base = Config.from_file(config_file) if config_file else Config()
        return base.with_overrides(**overrides)
    except ConfigError as exc:
        console.print(f"[red]Invalid configuration: {exc}[/]")
        sys.exit(1)


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", count=True, help="Log progress (-v) or debugging detail (-vv).")
def main(verbose: int) -> None:
    """Bounded symbolic execution of compiled C/C++ IR modules."""
    _configure_logging(verbose)


@main.command()
@click.argument("modules", nargs=-1, required=True, type=click.Path(exists=True))
@click.option("--function", "-f", "function", required=True, help="Entry function to explore")
@click.option(
    "--arg",
    "arg_specs",
    multiple=True,
    help="Argument spec per parameter: an integer, 'sym', 'buf:<size>' or 'default'. Can be repeated.",
)
@click.option("--loop-bound", type=int, default=None, help="Iterations per loop entry")
@click.option("--recursion-bound", type=int, default=None, help="Activations of one function on the stack")
@click.option("--max-paths", type=int, default=None, help="Max terminal outcomes")
@click.option("--strategy", type=click.Choice([s.value for s in Strategy]), default=None)
@click.option("--timeout", type=float, default=None, help="Wall-clock limit in seconds")
@click.option("--config", "config_file", type=click.Path(exists=True), help="Configuration JSON file")
@click.option("--output", "-o", type=click.Path(), help="Output file path")
@click.option("--format", "fmt", type=click.Choice(["json", "markdown"]), default="markdown")
@click.option(
    "--fail-on-bound",
    is_flag=True,
    default=False,
    help="Exit with code 3 if any path was truncated by a loop or recursion bound.",
)
def explore(
    modules: tuple[str, ...],
    function: str,
    arg_specs: tuple[str, ...],
    loop_bound: int | None,
    recursion_bound: int | None,
    max_paths: int | None,
    strategy: str | None,
    timeout: float | None,
    config_file: str | None,
    output: str | None,
    fmt: str,
    fail_on_bound: bool,
) -> None:
    """Explore every feasible path of FUNCTION and report its outcomes."""
    args = _parse_arg_specs(arg_specs)
    config = _build_config(
        config_file,
        loop_bound=loop_bound,
        recursion_bound=recursion_bound,
        max_paths=max_paths,
        strategy=strategy,
        time_limit=timeout,
    )

    console.print(f"[bold blue]IR Symbolic Executor v{__version__}[/]")
    console.print(f"Modules: {', '.join(modules)}\n")
    project = _load(modules, config)
    console.print(f"  Functions: {len(project.functions)}")
    console.print(f"  Globals: {len(project.globals)}\n")

    try:
        explorer = PathExplorer(project, config)
        with console.status(f"[bold green]Exploring {function}..."):
            result = explorer.explore(Query(function, args))
    except ConfigError as exc:
        console.print(f"[red]Invalid configuration: {exc}[/]")
        sys.exit(1)
    except QueryError as exc:
        console.print(f"[red]Invalid query: {exc}[/]")
        sys.exit(1)

    table = Table(title=f"Outcomes of {function}")
    table.add_column("Kind", style="bold")
    table.add_column("Outcome")
    table.add_column("Steps", justify="right")
    for outcome in result.outcomes:
        color = _KIND_COLORS[outcome.kind]
        table.add_row(f"[{color}]{outcome.kind.value}[/]", outcome.describe(), str(outcome.steps))
    if result.outcomes:
        console.print(table)
    else:
        console.print("[yellow]No feasible path reached a terminal state.[/]")
    console.print(f"\n[bold]Total: {len(result.outcomes)} outcomes[/]")
    if result.partial:
        console.print(f"[yellow]Exploration stopped early ({result.stop_reason.value}); results are partial.[/]")
    console.print()

    gen = ReportGenerator(Path(modules[0]).stem, explorer.solver)
    report = gen.to_json(result) if fmt == "json" else gen.to_markdown(result)
    if output:
        Path(output).write_text(report)
        console.print(f"[green]Report saved to {output}[/]")
    else:
        console.print(report, markup=False)

    bounded = result.by_kind(OutcomeKind.BOUND_EXCEEDED)
    if fail_on_bound and bounded:
        console.print(f"[red]{len(bounded)} path(s) exceeded an exploration bound.[/]")
        sys.exit(3)


@main.command("find-zero")
@click.argument("modules", nargs=-1, required=True, type=click.Path(exists=True))
@click.option("--function", "-f", "function", required=True, help="Function to solve for")
@click.option("--config", "config_file", type=click.Path(exists=True), help="Configuration JSON file")
def find_zero(modules: tuple[str, ...], function: str, config_file: str | None) -> None:
    """Print arguments under which FUNCTION returns zero."""
    config = _build_config(config_file)
    project = _load(modules, config)
    try:
        with console.status(f"[bold green]Searching for a zero of {function}..."):
            zero = find_zero_of_func(project, function, config)
    except ConfigError as exc:
        console.print(f"[red]Invalid configuration: {exc}[/]")
        sys.exit(1)
    except QueryError as exc:
        console.print(f"[red]Invalid query: {exc}[/]")
        sys.exit(1)
    if zero is None:
        console.print(f"[yellow]{function} cannot return zero on any explored path.[/]")
        sys.exit(4)
    params = project.function(function).params
    rendered = ", ".join(f"{param.name}={value}" for param, value in zip(params, zero))
    console.print(f"{function}({rendered}) == 0")


@main.command()
@click.argument("modules", nargs=-1, required=True, type=click.Path(exists=True))
def symbols(modules: tuple[str, ...]) -> None:
    """List linked functions and globals with their object ids."""
    project = _load(modules, Config())
    table = Table(title="Linked Symbols")
    table.add_column("Id", justify="right")
    table.add_column("Name", style="bold")
    table.add_column("Kind")
    table.add_column("Size", justify="right")
    table.add_column("Module")
    for symbol in sorted(project.symbols.values(), key=lambda s: s.object_id):
        table.add_row(str(symbol.object_id), symbol.name, symbol.kind, str(symbol.size), symbol.module)
    console.print(table)


if __name__ == "__main__":
    main()
