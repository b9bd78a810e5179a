"""Typer CLI entry point for MiniMaven."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.table import Table

from minimaven.build import build as build_projects
from minimaven.build import classpath
from minimaven.config import BuildConfig
from minimaven.exceptions import MiniMavenError
from minimaven.graph import build_graph, build_order
from minimaven.log import level_for, setup_logging
from minimaven.visualize import build_project_tree
from minimaven.visualize_html import export_pyvis
from minimaven.workspace import Workspace

app = typer.Typer(add_completion=False, help="Resolve, download and compile Maven-style project trees.")
console = Console()


@app.callback()
def main_options(
    ctx: typer.Context,
    offline: Annotated[Optional[bool], typer.Option("--offline/--online", help="Disable all network access.")] = None,
    download: Annotated[
        Optional[bool], typer.Option("--download/--no-download", help="Download missing artifacts.")
    ] = None,
    repository: Annotated[Optional[Path], typer.Option("--repository", help="Local artifact cache root.")] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Log progress.")] = False,
    debug: Annotated[bool, typer.Option("--debug", help="Log diagnostics.")] = False,
) -> None:
    """Global options; environment variables (MINIMAVEN_*) provide the defaults."""
    config = BuildConfig.from_env()
    if offline is not None:
        config.offline = offline
    if download is not None:
        config.download_automatically = download
    if repository is not None:
        config.repository = repository.resolve()
    config.verbose = config.verbose or verbose
    config.debug = config.debug or debug
    setup_logging(level_for(config.verbose, config.debug))
    try:
        config.validate()
    except ValueError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(code=1) from None
    ctx.obj = config


def _workspace(ctx: typer.Context, multi_roots: list[Path] | None = None, exclude: list[Path] | None = None) -> Workspace:
    workspace = Workspace(ctx.obj)
    for root in multi_roots or []:
        workspace.add_multi_project_root(root)
    for directory in exclude or []:
        workspace.exclude_from_multi_projects(directory)
    return workspace


MultiRoots = Annotated[
    Optional[list[Path]],
    typer.Option("--multi-root", help="Also resolve every sibling project below this directory."),
]
Excludes = Annotated[
    Optional[list[Path]],
    typer.Option("--exclude", help="Skip this directory when scanning multi-project roots."),
]


@app.command()
def resolve(
    ctx: typer.Context,
    pom: Annotated[Path, typer.Argument(help="Path to the root pom.xml (or its directory).")] = Path("pom.xml"),
    multi_root: MultiRoots = None,
    exclude: Excludes = None,
) -> None:
    """Resolve a project tree and print it."""
    workspace = _workspace(ctx, multi_root, exclude)
    try:
        workspace.parse_multi_projects()
        project = workspace.resolve(pom)
        console.print(build_project_tree(workspace, project))
    except MiniMavenError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(code=1) from None
    finally:
        workspace.close()


@app.command()
def build(
    ctx: typer.Context,
    pom: Annotated[Path, typer.Argument(help="Path to the root pom.xml (or its directory).")] = Path("pom.xml"),
    multi_root: MultiRoots = None,
    exclude: Excludes = None,
) -> None:
    """Resolve a project tree and compile it in dependency order."""
    workspace = _workspace(ctx, multi_root, exclude)
    try:
        workspace.parse_multi_projects()
        project = workspace.resolve(pom)
        compiled = build_projects(workspace, project)
        console.print(f"[green]Compiled[/green] {len(compiled)} project(s).")
    except MiniMavenError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(code=1) from None
    finally:
        workspace.close()


@app.command()
def download(
    ctx: typer.Context,
    pom: Annotated[Path, typer.Argument(help="Path to the root pom.xml (or its directory).")] = Path("pom.xml"),
) -> None:
    """Download every dependency the project tree needs into the local cache."""
    config: BuildConfig = ctx.obj
    config.download_automatically = True
    workspace = _workspace(ctx)
    try:
        project = workspace.resolve(pom)
        table = Table(title=f"Classpath of {project.coordinate.compact()}")
        table.add_column("Project")
        table.add_column("Archives", justify="right")
        for p in build_order(workspace, [project]):
            if p.build_from_source:
                table.add_row(p.coordinate.compact(), str(len(classpath(workspace, p))))
        console.print(table)
    except MiniMavenError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(code=1) from None
    finally:
        workspace.close()


@app.command()
def html(
    ctx: typer.Context,
    pom: Annotated[Path, typer.Argument(help="Path to the root pom.xml (or its directory).")] = Path("pom.xml"),
    out: Annotated[Path, typer.Option("--out", help="Output HTML file path.")] = Path("projects.html"),
) -> None:
    """Resolve a project tree and export an interactive HTML graph (Pyvis)."""
    workspace = _workspace(ctx)
    try:
        project = workspace.resolve(pom)
        out_path = export_pyvis(build_graph(workspace, [project]), out)
        console.print(f"[green]Wrote[/green] {out_path}")
    except MiniMavenError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(code=1) from None
    finally:
        workspace.close()


def main() -> None:
    """Console-script entry point."""
    app()
