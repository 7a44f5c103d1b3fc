from __future__ import annotations

from collections import deque
from collections.abc import Iterable

import networkx as nx

from mx_resolver.models import Dependency


def build_graph(root: str, edges: Iterable[tuple[str, str]], solution: Iterable[Dependency]) -> nx.DiGraph:
    """Build a directed graph of a solved scope where A -> B means A depends on B.

    Only the project and the mediated dependencies become nodes; links to
    candidates that lost mediation are dropped.
    """
    g = nx.DiGraph()
    g.add_node(root, ring=-1, label=root)
    for dep in solution:
        g.add_node(
            dep.coordinates,
            ring=dep.ring,
            scope=dep.scope.value if dep.scope else None,
            optional=dep.optional,
            label=dep.label(),
        )
    for u, v in edges:
        if u in g and v in g and u != v:
            g.add_edge(u, v)
    return g


def find_node(g: nx.DiGraph, target: str) -> str | None:
    """Match `target` (group:artifact or group:artifact:version) to a node id."""
    if target in g:
        return target
    prefix = f"{target}:"
    matches = sorted(str(n) for n in g.nodes if str(n).startswith(prefix))
    return matches[0] if matches else None


def reverse_dependencies(g: nx.DiGraph, target: str) -> list[str]:
    """Return predecessors of target (who depends on it)."""
    node = find_node(g, target)
    if node is None:
        return []
    return sorted(list(g.predecessors(node)))


def dependency_paths(g: nx.DiGraph, root: str, target: str) -> list[list[str]]:
    """All paths from the project to `target`, shortest first."""
    node = find_node(g, target)
    if node is None or root not in g:
        return []
    paths = [list(p) for p in nx.all_simple_paths(g, root, node)]
    return sorted(paths, key=len)


def nodes_within_depth(g: nx.DiGraph, root: str, depth: int | None) -> set[str]:
    """Return nodes within BFS depth from root (None means all descendants)."""
    if not root or not g.has_node(root):
        return set(g.nodes)

    if depth is None:
        return {root, *nx.descendants(g, root)}

    q: deque[tuple[str, int]] = deque([(root, 0)])
    seen: set[str] = {root}

    while q:
        node, dist = q.popleft()
        if dist >= depth:
            continue
        for nb in g.successors(node):
            nb_str = str(nb)
            if nb_str in seen:
                continue
            seen.add(nb_str)
            q.append((nb_str, dist + 1))

    return seen
