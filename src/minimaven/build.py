"""Compile a resolved project graph in dependency order."""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

from minimaven.exceptions import MissingDependencyError, ProcessError
from minimaven.graph import build_order
from minimaven.models import Project
from minimaven.process import implementation_build

if TYPE_CHECKING:
    from minimaven.workspace import Workspace


RESOURCES_DIRECTORY = Path("src") / "main" / "resources"


def classpath(workspace: Workspace, project: Project) -> list[Path]:
    """Collect the archives `project` compiles against.

    Direct dependencies of every scope but test count; transitively only
    compile/runtime/system ones that are not optional.

    Raises:
        MissingDependencyError: If a needed dependency is not available,
            naming the setting that kept it from being downloaded.
    """
    builder = workspace.builder
    result: list[Path] = []
    seen: set[str] = {project.key()}

    def visit(current: Project, transitive: bool) -> None:
        for _, dep in builder.effective_dependencies(current):
            if dep.scope == "test":
                continue
            if transitive and (dep.scope == "provided" or dep.optional):
                continue
            if dep.key() in seen:
                continue
            seen.add(dep.key())
            found = builder.find_project(dep, requester=current)
            if found is None:
                reason = builder.download_errors.get(dep.key()) or workspace.config.download_hint()
                raise MissingDependencyError(f"Missing dependency {dep.compact()} of {current}: {reason}")
            if not found.is_aggregator() and found.target is not None:
                result.append(found.target)
            visit(found, True)

    visit(project, False)
    return result


def source_files(project: Project) -> list[Path]:
    if project.source_directory is None:
        return []
    root = project.directory / project.source_directory
    if not root.is_dir():
        return []
    return sorted(root.rglob("*.java"))


def write_manifest(project: Project, output_dir: Path) -> Path:
    """Write META-INF/MANIFEST.MF, with Implementation-Build when requested."""
    lines = [
        "Manifest-Version: 1.0",
        "Created-By: MiniMaven",
        f"Implementation-Title: {project.coordinate.artifact_id}",
        f"Implementation-Version: {project.coordinate.effective_version()}",
    ]
    if project.include_implementation_build:
        try:
            build = implementation_build(project.directory)
        except ProcessError as exc:
            logger.warning("Omitting Implementation-Build for {}: {}", project, exc)
            build = None
        if build:
            lines.append(f"Implementation-Build: {build}")
    manifest = output_dir / "META-INF" / "MANIFEST.MF"
    manifest.parent.mkdir(parents=True, exist_ok=True)
    manifest.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return manifest


def build(workspace: Workspace, root: Project) -> list[Project]:
    """Compile every source project reachable from `root`.

    Returns:
        The projects that were compiled, in build order.

    Raises:
        MissingDependencyError: If a dependency is not available.
        CompileError: If the compiler reports errors.
    """
    compiled: list[Project] = []
    for project in build_order(workspace, [root]):
        if not project.build_from_source or project.target is None:
            continue
        sources = source_files(project)
        if not sources:
            logger.debug("No sources in {}", project)
            continue
        cp = classpath(workspace, project)
        logger.info("Compiling {} ({} files)", project, len(sources))
        workspace.compiler.compile(sources, cp, project.target)

        resources = project.directory / RESOURCES_DIRECTORY
        if resources.is_dir():
            shutil.copytree(resources, project.target, dirs_exist_ok=True)
        write_manifest(project, project.target)
        compiled.append(project)
    return compiled
