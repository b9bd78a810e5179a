from __future__ import annotations

import shutil
from collections.abc import Callable, Sequence
from pathlib import Path

import pytest

from conftest import install_artifact

from minimaven.build import build, classpath, source_files, write_manifest
from minimaven.config import BuildConfig
from minimaven.exceptions import MiniMavenError, MissingDependencyError
from minimaven.graph import build_graph, build_order
from minimaven.models import Coordinate, Project
from minimaven.process import run_process
from minimaven.workspace import Workspace


WritePom = Callable[..., Path]


class RecordingCompiler:
    def __init__(self) -> None:
        self.calls: list[tuple[list[str], list[Path], Path]] = []

    def compile(self, source_files: Sequence[Path], classpath: Sequence[Path], output_dir: Path) -> None:
        output_dir.mkdir(parents=True, exist_ok=True)
        self.calls.append(([f.name for f in source_files], list(classpath), output_dir))


@pytest.fixture
def compiler() -> RecordingCompiler:
    return RecordingCompiler()


@pytest.fixture
def build_workspace(config: BuildConfig, compiler: RecordingCompiler) -> Workspace:
    return Workspace(config, compiler=compiler)


def _source(directory: Path, name: str) -> None:
    path = directory / "src" / "main" / "java" / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f"class {path.stem} {{}}\n", encoding="utf-8")


@pytest.fixture
def tree(tmp_path: Path, write_pom: WritePom, repository: Path) -> Path:
    for artifact in ("opt", "prov", "servlet"):
        install_artifact(repository, "g", artifact, "1.0")
    root = tmp_path / "proj"
    write_pom(root, "g", "a", "1.0", packaging="pom", modules=["core", "app"])
    write_pom(
        root / "core",
        None,
        "core",
        None,
        parent=("g", "a", "1.0"),
        dependencies=[
            {"groupId": "g", "artifactId": "opt", "version": "1.0", "optional": "true"},
            {"groupId": "g", "artifactId": "prov", "version": "1.0", "scope": "provided"},
        ],
    )
    write_pom(
        root / "app",
        None,
        "app",
        None,
        parent=("g", "a", "1.0"),
        dependencies=[
            {"groupId": "g", "artifactId": "core", "version": "${project.version}"},
            {"groupId": "g", "artifactId": "servlet", "version": "1.0", "scope": "provided"},
            {"groupId": "g", "artifactId": "junit", "version": "4.0", "scope": "test"},
        ],
    )
    _source(root / "core", "Core.java")
    resources = root / "core" / "src" / "main" / "resources"
    resources.mkdir(parents=True)
    (resources / "core.properties").write_text("a=b\n", encoding="utf-8")
    _source(root / "app", "App.java")
    return root / "pom.xml"


def _jar(repository: Path, artifact: str) -> Path:
    return repository / "g" / artifact / "1.0" / f"{artifact}-1.0.jar"


def test_classpath_scopes(build_workspace: Workspace, tree: Path, repository: Path) -> None:
    root = build_workspace.resolve(tree)
    core, app = root.children

    assert classpath(build_workspace, core) == [_jar(repository, "opt"), _jar(repository, "prov")]
    # test scope is skipped; optional and provided are not transitive
    assert classpath(build_workspace, app) == [core.target, _jar(repository, "servlet")]


def test_missing_dependency_names_the_setting(
    tmp_path: Path, build_workspace: Workspace, write_pom: WritePom
) -> None:
    pom = write_pom(
        tmp_path / "solo",
        "g",
        "solo",
        "1.0",
        dependencies=[{"groupId": "g", "artifactId": "absent", "version": "1.0"}],
    )
    project = build_workspace.resolve(pom)

    with pytest.raises(MissingDependencyError, match="g:absent:1.0.*offline mode is set"):
        classpath(build_workspace, project)


def test_build_order_puts_dependencies_first(build_workspace: Workspace, tree: Path) -> None:
    root = build_workspace.resolve(tree)

    order = [p.key() for p in build_order(build_workspace, [root])]

    assert order.index("g:a") < order.index("g:core") < order.index("g:app")
    assert order.index("g:servlet") < order.index("g:app")


def test_build_graph_edges(build_workspace: Workspace, tree: Path) -> None:
    root = build_workspace.resolve(tree)

    g = build_graph(build_workspace, [root])

    assert g.edges["g:app", "g:a"]["kind"] == "parent"
    assert g.edges["g:app", "g:core"]["kind"] == "dependency"
    assert g.edges["g:app", "g:servlet"]["scope"] == "provided"
    assert "g:junit" not in g
    assert g.nodes["g:a"]["aggregator"]


def test_build_order_reports_cycles(tmp_path: Path, build_workspace: Workspace, write_pom: WritePom) -> None:
    siblings = tmp_path / "siblings"
    write_pom(siblings / "x", "g", "x", "1.0", dependencies=[{"groupId": "g", "artifactId": "y", "version": "1.0"}])
    write_pom(siblings / "y", "g", "y", "1.0", dependencies=[{"groupId": "g", "artifactId": "x", "version": "1.0"}])
    build_workspace.add_multi_project_root(siblings)
    x, _ = build_workspace.parse_multi_projects()

    with pytest.raises(MiniMavenError, match="Dependency cycle"):
        build_order(build_workspace, [x])


def test_build_compiles_in_order(build_workspace: Workspace, tree: Path, compiler: RecordingCompiler) -> None:
    root = build_workspace.resolve(tree)
    core, app = root.children

    compiled = build(build_workspace, root)

    assert compiled == [core, app]
    assert [call[0] for call in compiler.calls] == [["Core.java"], ["App.java"]]
    assert compiler.calls[1][1][0] == core.target
    assert core.target is not None and app.target is not None
    assert (core.target / "core.properties").read_text(encoding="utf-8") == "a=b\n"
    manifest = (app.target / "META-INF" / "MANIFEST.MF").read_text(encoding="utf-8")
    assert "Implementation-Title: app" in manifest
    assert "Implementation-Version: 1.0" in manifest
    assert "Implementation-Build" not in manifest


def test_build_skips_projects_without_sources(
    tmp_path: Path, build_workspace: Workspace, write_pom: WritePom, compiler: RecordingCompiler
) -> None:
    project = build_workspace.resolve(write_pom(tmp_path / "empty", "g", "empty", "1.0"))

    assert source_files(project) == []
    assert build(build_workspace, project) == []
    assert compiler.calls == []


def test_source_files_sorted(tmp_path: Path) -> None:
    project = Project(directory=tmp_path, source_directory="src")
    for name in ("b/B.java", "A.java", "notes.txt"):
        path = tmp_path / "src" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("", encoding="utf-8")

    assert [p.relative_to(tmp_path / "src").as_posix() for p in source_files(project)] == ["A.java", "b/B.java"]


IMPLEMENTATION_ENTRIES = (
    "  <build><plugins><plugin><configuration><archive><manifest>"
    "<addDefaultImplementationEntries>true</addDefaultImplementationEntries>"
    "</manifest></archive></configuration></plugin></plugins></build>\n</project>"
)


def test_failing_git_query_only_drops_implementation_build(
    tmp_path: Path,
    build_workspace: Workspace,
    write_pom: WritePom,
    compiler: RecordingCompiler,
    log_messages: list[str],
) -> None:
    root_dir = tmp_path / "proj"
    pom = write_pom(root_dir, "g", "a", "1.0", packaging="pom", modules=["one", "two"])
    pom.write_text(pom.read_text(encoding="utf-8").replace("</project>", IMPLEMENTATION_ENTRIES), encoding="utf-8")
    for name in ("one", "two"):
        write_pom(root_dir / name, None, name, None, parent=("g", "a", "1.0"))
        _source(root_dir / name, f"{name.title()}.java")
    # not a usable repository: git rev-parse fails here
    (root_dir / ".git").mkdir()

    root = build_workspace.resolve(pom)
    compiled = build(build_workspace, root)

    assert [p.key() for p in compiled] == ["g:one", "g:two"]
    assert len(compiler.calls) == 2
    for project in compiled:
        assert project.include_implementation_build
        assert project.target is not None
        manifest = (project.target / "META-INF" / "MANIFEST.MF").read_text(encoding="utf-8")
        assert "Implementation-Build" not in manifest
    assert any("Implementation-Build" in m for m in log_messages)


@pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")
def test_manifest_records_git_commit(tmp_path: Path) -> None:
    work_tree = tmp_path / "work"
    work_tree.mkdir()
    run_process(["git", "init", "-q"], cwd=work_tree)
    run_process(
        [
            "git",
            "-c", "user.name=MiniMaven",
            "-c", "user.email=build@example.org",
            "-c", "commit.gpgsign=false",
            "commit", "-q", "--allow-empty", "-m", "init",
        ],
        cwd=work_tree,
    )
    head = run_process(["git", "rev-parse", "HEAD"], cwd=work_tree).strip()
    project = Project(
        coordinate=Coordinate(group_id="g", artifact_id="app", version="1.0"),
        directory=work_tree / "app",
        include_implementation_build=True,
    )

    manifest = write_manifest(project, tmp_path / "out").read_text(encoding="utf-8")

    assert len(head) == 40
    assert f"Implementation-Build: {head}\n" in manifest
