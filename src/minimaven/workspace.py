"""The build environment shared by every project of one resolution.

A Workspace owns all Projects: parsed ones, synthetic ones standing in for
jars without descriptors, and the projects still being resolved. Parent links
are coordinate keys looked up here, never owning references.
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

from loguru import logger

from minimaven.builder import ProjectGraphBuilder
from minimaven.compiler import JavacCompiler
from minimaven.config import BuildConfig
from minimaven.exceptions import DescriptorError
from minimaven.fetcher import ChecksumFetcher
from minimaven.models import Coordinate, Project
from minimaven.remote import RemoteResolver


def _canonical(path: Path) -> Path:
    try:
        return path.resolve()
    except OSError:
        return path.absolute()


class Workspace:
    """Process-wide resolution context.

    Not thread-safe: resolution is synchronous and depth-first, and all caches
    are mutated from the resolving thread only.
    """

    def __init__(
        self,
        config: BuildConfig | None = None,
        fetcher: ChecksumFetcher | None = None,
        compiler: JavacCompiler | None = None,
    ) -> None:
        self.config = config or BuildConfig.from_env()
        self.by_coordinate_key: dict[str, Project] = {}
        self.by_descriptor_path: dict[tuple[Path, str | None], Project] = {}
        self.in_progress: dict[str, Project] = {}
        self.multi_project_roots: list[Path] = []
        self.excluded: set[Path] = set()
        self._fetcher = fetcher
        self._remote: RemoteResolver | None = None
        self._compiler = compiler
        self.builder = ProjectGraphBuilder(self)

    @property
    def repository(self) -> Path:
        return self.config.repository

    @property
    def fetcher(self) -> ChecksumFetcher:
        if self._fetcher is None:
            self._fetcher = ChecksumFetcher(self.config)
        return self._fetcher

    @property
    def remote(self) -> RemoteResolver:
        if self._remote is None:
            self._remote = RemoteResolver(self.config, self.fetcher, self.repository)
        return self._remote

    @property
    def compiler(self) -> JavacCompiler:
        if self._compiler is None:
            self._compiler = JavacCompiler()
        return self._compiler

    def close(self) -> None:
        if self._fetcher is not None:
            self._fetcher.close()

    def resolve(self, descriptor: Path | str) -> Project:
        """Resolve a root descriptor into a fully linked project graph.

        Raises:
            DescriptorError: If the descriptor is missing or invalid.
            UnresolvedParentError: If a declared parent cannot be found.
        """
        path = Path(descriptor)
        if path.is_dir():
            path = path / "pom.xml"
        project = self.builder.parse(path)
        if project is None:
            raise DescriptorError(path, "pom.xml not found")
        return project

    def find_project(self, coordinate: Coordinate, requester: Project | None = None) -> Project | None:
        return self.builder.find_project(coordinate, requester=requester)

    def lookup(self, key: str | None) -> Project | None:
        """Return the project registered under `key`, preferring ones still being resolved."""
        if key is None:
            return None
        project = self.in_progress.get(key)
        if project is not None:
            return project
        return self.by_coordinate_key.get(key)

    def parent_of(self, project: Project) -> Project | None:
        parent = self.lookup(project.parent_key)
        return None if parent is project else parent

    def ancestors(self, project: Project) -> Iterator[Project]:
        """Yield the parent chain, nearest first, stopping at any repeat."""
        seen = {id(project)}
        current = self.parent_of(project)
        while current is not None and id(current) not in seen:
            seen.add(id(current))
            yield current
            current = self.parent_of(current)

    def register(self, key: str, project: Project) -> bool:
        """Cache `project` under `key` unless the key is taken (first writer wins)."""
        if key in self.by_coordinate_key:
            return False
        self.by_coordinate_key[key] = project
        return True

    def contains_project(self, coordinate: Coordinate | str, artifact_id: str | None = None) -> bool:
        if isinstance(coordinate, str):
            coordinate = Coordinate(group_id=coordinate, artifact_id=artifact_id)
        return coordinate.key() in self.by_coordinate_key

    def fake_project(self, target: Path, coordinate: Coordinate) -> Project:
        """Register a synthetic project for an artifact that has no descriptor.

        A few well-known artifacts ship with incomplete metadata; their
        missing dependencies are added here by artifactId.
        """
        project = Project(
            coordinate=coordinate.model_copy(update={"scope": None, "optional": False, "system_path": None}),
            directory=target.parent,
            target=target,
            packaging="jar",
            source_directory=None,
            synthetic=True,
        )
        artifact_id = coordinate.artifact_id
        if artifact_id == "ij":
            tools = self.builder.expand(project, "${java.home}/../lib/tools.jar")
            if tools and Path(tools).exists():
                project.dependencies.append(
                    Coordinate(group_id="com.sun", artifact_id="tools", version="1.4.2", system_path=tools)
                )
        elif artifact_id == "imglib2-io":
            project.dependencies.append(
                Coordinate(group_id="loci", artifact_id="bio-formats", version="${bio-formats.version}")
            )
        elif artifact_id == "jfreechart":
            project.dependencies.append(Coordinate(group_id="jfree", artifact_id="jcommon", version="1.0.17"))

        key = coordinate.key()
        existing = self.by_coordinate_key.get(key)
        if existing is not None:
            logger.warning("{} overrides {}", target, existing)
        self.by_coordinate_key[key] = project
        return project

    def add_multi_project_root(self, root: Path | str) -> None:
        self.multi_project_roots.append(_canonical(Path(root)))

    def exclude_from_multi_projects(self, directory: Path | str) -> None:
        self.excluded.add(_canonical(Path(directory)))

    def parse_multi_projects(self) -> list[Project]:
        """Resolve every sibling project below the registered roots.

        Roots are taken last-in first-out; only immediate subdirectories
        holding a pom.xml are considered, in sorted order.
        """
        projects: list[Project] = []
        while self.multi_project_roots:
            root = self.multi_project_roots.pop()
            if not root.is_dir():
                continue
            for directory in sorted(root.iterdir()):
                if _canonical(directory) in self.excluded:
                    continue
                pom = directory / "pom.xml"
                if not pom.is_file():
                    continue
                project = self.builder.parse(pom)
                if project is not None:
                    projects.append(project)
        return projects
