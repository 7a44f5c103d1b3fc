"""Rich rendering utilities for solved dependency sets."""

from __future__ import annotations

import networkx as nx
from rich.table import Table
from rich.tree import Tree

from mx_resolver.graph import nodes_within_depth
from mx_resolver.models import Dependency
from mx_resolver.scope import Scope


def build_dependency_tree(g: nx.DiGraph, root: str, *, depth: int | None = None) -> Tree:
    """Build a Rich Tree of a solved scope graph.

    Args:
        g: Graph from `graph.build_graph`.
        root: Project node id.
        depth: Maximum depth to render, None for all.

    Returns:
        A Rich Tree object for rendering.
    """
    tree = Tree(f"[bold]{root}[/bold]")
    if g.out_degree(root) == 0:
        tree.add("[dim]No dependencies found[/dim]")
        return tree

    visible = nodes_within_depth(g, root, depth)
    shown: set[str] = set()

    def walk(node: str, branch: Tree) -> None:
        for child in sorted(g.successors(node), key=lambda n: (g.nodes[n].get("ring", 0), str(n))):
            if child not in visible:
                continue
            label = g.nodes[child].get("label") or str(child)
            if child in shown:
                branch.add(f"[dim]{label} (see above)[/dim]")
                continue
            shown.add(child)
            walk(child, branch.add(label))

    walk(root, tree)
    return tree


def build_solution_table(scope: Scope, deps: list[Dependency]) -> Table:
    """Tabulate a solved scope: ring, label and type."""
    table = Table(title=f"{scope.value} dependencies")
    table.add_column("Ring", style="dim", width=6)
    table.add_column("Dependency")
    table.add_column("Type")
    for dep in deps:
        table.add_row(str(dep.ring), dep.label(), dep.type)
    return table
