from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

import networkx as nx

from minimaven.exceptions import MiniMavenError
from minimaven.models import Project

if TYPE_CHECKING:
    from minimaven.workspace import Workspace


def build_graph(workspace: Workspace, roots: Iterable[Project]) -> nx.DiGraph:
    """Build a directed graph where A -> B means A needs B first.

    Nodes are coordinate keys carrying the Project as `project`. Edges are
    tagged `kind="dependency"` (with scope/optional) or `kind="parent"`.
    Modules are followed for reachability but add no edge of their own.
    """
    g = nx.DiGraph()
    builder = workspace.builder
    stack = list(roots)
    seen: set[int] = set()

    def node(project: Project) -> str:
        key = project.key()
        if key not in g:
            g.add_node(
                key,
                project=project,
                group_id=project.coordinate.group_id,
                artifact_id=project.coordinate.artifact_id,
                version=project.coordinate.effective_version(),
                aggregator=project.is_aggregator(),
                from_source=project.build_from_source,
            )
        return key

    while stack:
        project = stack.pop()
        if id(project) in seen:
            continue
        seen.add(id(project))
        a = node(project)

        parent = workspace.parent_of(project)
        if parent is not None:
            g.add_edge(a, node(parent), kind="parent")
            stack.append(parent)

        for _, dep in builder.effective_dependencies(project):
            if not builder.wants_dependency(project, dep):
                continue
            target = builder.find_project(dep, requester=project)
            if target is None or target is project:
                continue
            b = node(target)
            if a != b:
                g.add_edge(a, b, kind="dependency", scope=dep.scope, optional=dep.optional)
            stack.append(target)

        stack.extend(reversed(project.children))
    return g


def build_order(workspace: Workspace, roots: Iterable[Project]) -> list[Project]:
    """Return every reachable project, each after everything it needs.

    Ties are broken by coordinate key so the order is deterministic.

    Raises:
        MiniMavenError: If the dependencies form a cycle.
    """
    g = build_graph(workspace, roots)
    try:
        keys = list(nx.lexicographical_topological_sort(g.reverse(copy=False)))
    except nx.NetworkXUnfeasible as exc:
        cycle = " -> ".join(u for u, _ in nx.find_cycle(g))
        raise MiniMavenError(f"Dependency cycle: {cycle}") from exc
    return [g.nodes[k]["project"] for k in keys]

