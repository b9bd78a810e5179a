"""Rich rendering utilities for resolved project graphs."""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.tree import Tree

from minimaven.models import Project

if TYPE_CHECKING:
    from minimaven.workspace import Workspace


def _project_label(project: Project) -> str:
    label = f"[bold]{project.coordinate.compact()}[/bold]"
    if project.is_aggregator():
        label += " [dim](aggregator)[/dim]"
    elif project.build_from_source:
        label += " [green](source)[/green]"
    elif project.synthetic:
        label += " [yellow](jar only)[/yellow]"
    return label


def build_project_tree(workspace: Workspace, project: Project) -> Tree:
    """Build a Rich Tree of modules and their dependencies.

    Args:
        workspace: The workspace the project was resolved in.
        project: Root of the tree.

    Returns:
        A Rich Tree object for rendering.
    """
    root = Tree(_project_label(project))
    _fill(workspace, root, project, {id(project)})
    return root


def _fill(workspace: Workspace, branch: Tree, project: Project, seen: set[int]) -> None:
    parent = workspace.parent_of(project)
    if parent is not None:
        branch.add(f"[dim]parent {parent.coordinate.compact()}[/dim]")

    if project.dependencies:
        deps_branch = branch.add("dependencies")
        for dep in project.dependencies:
            label = dep.label()
            if dep.resolved_version and dep.resolved_version != dep.version:
                label += f" [cyan]-> {dep.resolved_version}[/cyan]"
            if workspace.lookup(dep.key()) is None:
                label += " [red](missing)[/red]"
            deps_branch.add(label)

    for child in project.children:
        if id(child) in seen:
            continue
        seen.add(id(child))
        _fill(workspace, branch.add(_project_label(child)), child, seen)
