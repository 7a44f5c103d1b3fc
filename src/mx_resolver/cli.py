"""Typer CLI entry point for mx-resolver."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from mx_resolver.cache import ArtifactCache
from mx_resolver.config import MAVEN_CENTRAL, ResolverContext
from mx_resolver.descriptor import load_descriptor
from mx_resolver.exceptions import MxError
from mx_resolver.graph import build_graph, dependency_paths, reverse_dependencies
from mx_resolver.parser import PomReader
from mx_resolver.scope import Scope
from mx_resolver.solver import Solver
from mx_resolver.visualize import build_dependency_tree, build_solution_table

app = typer.Typer(add_completion=False, help="Resolve and cache Maven dependencies.")
console = Console()
err_console = Console(stderr=True)

DescriptorArg = Annotated[
    Path,
    typer.Argument(help="Project descriptor (YAML) or a pom.xml."),
]
ScopeOpt = Annotated[str, typer.Option("--scope", "-s", help="compile, runtime, test or build.")]
OfflineOpt = Annotated[bool, typer.Option("--offline", help="Never touch the network.")]


@app.callback()
def configure(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging.")] = False,
    quiet: Annotated[bool, typer.Option("--quiet", "-q", help="Only warnings and errors.")] = False,
) -> None:
    """Configure logging for every command."""
    level = logging.DEBUG if verbose else logging.WARNING if quiet else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _scope(value: str) -> Scope:
    scope = Scope.from_string(value)
    if scope is None:
        raise typer.BadParameter(f"Unknown scope: {value}")
    return scope


def _solver(path: Path, offline: bool = False) -> Solver:
    """Build a solver for a YAML descriptor or a pom.xml."""
    context = ResolverContext.from_env()
    if offline:
        context.offline = True

    if path.suffix.lower() in (".xml", ".pom"):
        if not context.repositories:
            context.repositories = [MAVEN_CENTRAL]
        context.validate()
        cache = ArtifactCache(context.root, context.maven_cache)
        reader = PomReader(cache, properties=context.properties, strict_properties=context.strict_properties)
        return Solver(context, reader.read_pom_file(path), cache=cache, descriptor_path=path)

    project = load_descriptor(path)
    context = project.apply(context)
    context.validate()
    return Solver(context, project.to_pom(context), descriptor_path=project.path)


def _fail(exc: Exception) -> typer.Exit:
    console.print(f"[bold red]Error:[/bold red] {exc}")
    return typer.Exit(code=1)


@app.command()
def solve(descriptor: DescriptorArg, offline: OfflineOpt = False) -> None:
    """Solve every scope and retrieve the artifacts into the cache."""
    try:
        solver = _solver(descriptor, offline)
        computed = solver.resolve()
        for scope in (Scope.COMPILE, Scope.RUNTIME, Scope.TEST):
            console.print(build_solution_table(scope, solver.solve(scope)))
        if not computed:
            console.print("[dim]Reused cached solution.[/dim]")
        if solver.failures:
            console.print(f"[bold red]Error:[/bold red] {len(solver.failures)} dependencies could not be resolved.")
            raise typer.Exit(code=1)
    except (MxError, ValueError) as exc:
        raise _fail(exc) from None


@app.command()
def classpath(
    descriptor: DescriptorArg,
    scope: ScopeOpt = "compile",
    offline: OfflineOpt = False,
) -> None:
    """Print the classpath of a scope, one entry per line."""
    try:
        solver = _solver(descriptor, offline)
        for path in solver.get_classpath(_scope(scope)):
            console.print(str(path), soft_wrap=True, highlight=False)
    except (MxError, ValueError) as exc:
        raise _fail(exc) from None


@app.command()
def tree(
    descriptor: DescriptorArg,
    scope: ScopeOpt = "compile",
    depth: Annotated[int | None, typer.Option("--depth", help="Maximum depth to show.")] = None,
    offline: OfflineOpt = False,
) -> None:
    """Print the dependency tree of a scope."""
    try:
        solver = _solver(descriptor, offline)
        selected = _scope(scope)
        root = solver.pom.coordinates
        g = build_graph(root, solver.edges(selected), solver.solve(selected))
        console.print(build_dependency_tree(g, root, depth=depth))
    except (MxError, ValueError) as exc:
        raise _fail(exc) from None


@app.command()
def why(
    descriptor: DescriptorArg,
    target: Annotated[str, typer.Argument(help="groupId:artifactId[:version]")],
    scope: ScopeOpt = "compile",
    offline: OfflineOpt = False,
) -> None:
    """Show who pulls TARGET into a scope."""
    try:
        solver = _solver(descriptor, offline)
        selected = _scope(scope)
        root = solver.pom.coordinates
        g = build_graph(root, solver.edges(selected), solver.solve(selected))

        paths = dependency_paths(g, root, target)
        if not paths:
            console.print(f"[dim]{target} is not in the {selected.value} scope.[/dim]")
            return

        table = Table(title=f"Reverse dependencies (who depends on {target})")
        table.add_column("#", style="dim", width=6)
        table.add_column("Dependent (predecessor)")
        for i, coordinates in enumerate(reverse_dependencies(g, target), start=1):
            table.add_row(str(i), coordinates)
        console.print(table)
        for path in paths:
            console.print(" -> ".join(path))
    except (MxError, ValueError) as exc:
        raise _fail(exc) from None


@app.command()
def pom(
    descriptor: Annotated[Path, typer.Argument(help="Project descriptor (YAML).")],
    out: Annotated[Path | None, typer.Option("--out", help="Output pom.xml path.")] = None,
) -> None:
    """Render the descriptor as a Maven pom.xml."""
    try:
        project = load_descriptor(descriptor)
        xml = project.to_pom(project.apply(ResolverContext.from_env())).to_xml()
        if out is None:
            console.print(xml, soft_wrap=True, highlight=False, markup=False)
            return
        out.write_text(xml, encoding="utf-8")
        console.print(f"[green]Wrote[/green] {out}")
    except (MxError, ValueError) as exc:
        raise _fail(exc) from None


@app.command()
def purge(descriptor: DescriptorArg) -> None:
    """Delete old snapshot revisions of the project's dependencies."""
    try:
        solver = _solver(descriptor, offline=True)
        deleted = solver.purge()
        for path in deleted:
            console.print(f"[dim]deleted[/dim] {path}", highlight=False)
        console.print(f"[green]Purged[/green] {len(deleted)} file(s).")
    except (MxError, ValueError) as exc:
        raise _fail(exc) from None


def main() -> None:
    """Console-script entry point."""
    app()
