"""Turn descriptors into a linked project graph.

Each descriptor goes through the same stages: parsed, modules expanded,
parent linked, target defaulted, cached. Dependencies are resolved once the
whole tree a resolution started from (including its parent chain) is linked,
so that inherited properties and dependencyManagement are visible.
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import IO, TYPE_CHECKING

from loguru import logger

from minimaven.config import BuildConfig
from minimaven.exceptions import DescriptorError, IntegrityError, TransportError, UnresolvedParentError
from minimaven.models import Coordinate, Project
from minimaven.parser import has_placeholders, parse_descriptor, resolve_placeholders
from minimaven.versions import VersionRange, is_range, is_snapshot

if TYPE_CHECKING:
    from minimaven.workspace import Workspace


DESCRIPTOR_NAME = "pom.xml"
DEFAULT_SOURCE_DIRECTORY = "src/main/java"
BUILD_OUTPUT = Path("target") / "classes"


def _is_within(path: Path, root: Path) -> bool:
    try:
        path.resolve().relative_to(root.resolve())
    except ValueError:
        return False
    return True


def _descriptor_key(path: Path, classifier: str | None) -> tuple[Path, str | None]:
    return path.resolve(), classifier


class ProjectGraphBuilder:
    """Recursive, depth-first resolution of descriptors into Projects."""

    def __init__(self, workspace: Workspace) -> None:
        self.workspace = workspace
        self._parsing: dict[tuple[Path, str | None], Project] = {}
        self._dependencies_resolved: set[int] = set()
        self.download_errors: dict[str, str] = {}
        self._journal: list[tuple] | None = None

    @property
    def config(self) -> BuildConfig:
        return self.workspace.config

    # -- parsing ---------------------------------------------------------------

    def parse(self, path: Path, parent: Project | None = None, classifier: str | None = None) -> Project | None:
        """Resolve the descriptor at `path`.

        Returns the already resolved project when the same file (and
        classifier) was seen before, and None when the file does not exist.
        """
        key = _descriptor_key(path, classifier)
        cached = self.workspace.by_descriptor_path.get(key) or self._parsing.get(key)
        if cached is not None:
            return cached
        if not path.exists():
            return None

        logger.debug("Parsing {}", path)
        with self._transaction():
            with path.open("rb") as fh:
                project = parse_descriptor(fh, key[0].parent, path)
            self._parsing[key] = project
            try:
                self._resolve(project, parent, classifier)
            finally:
                del self._parsing[key]
            self.workspace.by_descriptor_path[key] = project
            self._record("path", key)
            if parent is None:
                self.resolve_dependencies(project)
        return project

    def parse_stream(
        self,
        stream: IO[bytes],
        directory: Path,
        parent: Project | None = None,
        classifier: str | None = None,
        source: Path | None = None,
    ) -> Project:
        """Resolve a descriptor read from `stream` as if it lived in `directory`."""
        with self._transaction():
            project = parse_descriptor(stream, directory, source)
            self._resolve(project, parent, classifier)
            if parent is None:
                self.resolve_dependencies(project)
        return project

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        """Undo the cache entries of a top-level resolution that fails.

        Nested resolutions (modules, parents, repository descriptors) join the
        enclosing transaction.
        """
        if self._journal is not None:
            yield
            return
        self._journal = []
        try:
            yield
        except Exception:
            self._rollback(self._journal)
            raise
        finally:
            self._journal = None

    def _record(self, kind: str, *entry: object) -> None:
        if self._journal is not None:
            self._journal.append((kind, *entry))

    def _rollback(self, journal: list[tuple]) -> None:
        workspace = self.workspace
        for kind, *entry in reversed(journal):
            if kind == "key":
                key, project = entry
                if workspace.by_coordinate_key.get(key) is project:
                    del workspace.by_coordinate_key[key]
            elif kind == "path":
                workspace.by_descriptor_path.pop(entry[0], None)
            elif kind == "child":
                parent, child = entry
                parent.children = [c for c in parent.children if c is not child]
            elif kind == "dependencies":
                self._dependencies_resolved.discard(entry[0])
        logger.debug("Rolled back {} cache entries of a failed resolution", len(journal))

    def _resolve(self, project: Project, parent: Project | None, classifier: str | None) -> None:
        source = project.descriptor or project.directory / DESCRIPTOR_NAME
        coordinate = project.coordinate
        coordinate.classifier = classifier

        if parent is not None:
            project.parent_key = self.key_of(parent)
            if parent.include_implementation_build:
                project.include_implementation_build = True
        if project.parent_coordinate is not None:
            coordinate.group_id = coordinate.group_id or project.parent_coordinate.group_id
            coordinate.version = coordinate.version or project.parent_coordinate.version
        for field, value in (
            ("artifactId", coordinate.artifact_id),
            ("groupId", coordinate.group_id),
            ("version", coordinate.version),
        ):
            if not value:
                raise DescriptorError(source, f"Missing {field}", field=field)

        progress_key = self.key_of(project)
        shadowed = self.workspace.in_progress.get(progress_key)
        self.workspace.in_progress[progress_key] = project
        try:
            self._expand_modules(project)
            if project.parent_coordinate is not None and project.parent_key is None:
                self._link_parent(project)
            self._default_target(project)
            registered_key = self.key_of(project)
            if self.workspace.register(registered_key, project):
                self._record("key", registered_key, project)
            else:
                logger.debug("{} already cached, keeping the first one", project)
        finally:
            if shadowed is not None:
                self.workspace.in_progress[progress_key] = shadowed
            else:
                self.workspace.in_progress.pop(progress_key, None)

    def _expand_modules(self, project: Project) -> None:
        for module in project.modules:
            module_path = project.directory / module
            if module_path.suffix != ".xml":
                module_path = module_path / DESCRIPTOR_NAME
            child = self.parse(module_path, project)
            if child is None:
                raise DescriptorError(module_path, f"Module {module} of {project} not found", field="module")
            project.add_child(child)

    def _link_parent(self, project: Project) -> None:
        dependency = self.expand_coordinate(project, project.parent_coordinate)
        parent = self.find_project(dependency, requester=project, download=False)
        if parent is project:
            parent = None

        if parent is None:
            parent_file = project.directory / (dependency.relative_path or "..")
            if parent_file.is_dir():
                parent_file = parent_file / DESCRIPTOR_NAME
            if parent_file.exists():
                candidate = self.parse(parent_file)
                if candidate is not None and candidate is not project and self.key_of(candidate) == dependency.key():
                    parent = candidate
                elif candidate is not None:
                    logger.debug("{} is not the parent {} of {}", parent_file, dependency, project)

        if parent is None and self.config.can_download():
            if self.download(dependency, requester=project):
                parent = self.find_project(dependency, requester=project, download=False)

        if parent is None:
            hint = self.download_errors.get(dependency.key()) or self.config.download_hint()
            raise UnresolvedParentError(f"Parent not found: {dependency.compact()} (required by {project}; {hint})")

        project_key = self.key_of(project)
        if parent.parent_key == project_key:
            # cycle: the parent claims this project as its own parent
            logger.debug("Breaking parent cycle between {} and {}", project, parent)
            parent.parent_key = None
            project.children = [c for c in project.children if c is not parent]
        if parent.include_implementation_build:
            project.include_implementation_build = True
        project.parent_key = self.key_of(parent)
        parent.add_child(project)
        self._record("child", parent, project)

    def _default_target(self, project: Project) -> None:
        coordinate = project.coordinate
        expanded = self.expand_coordinate(project, coordinate)
        coordinate.group_id = expanded.group_id
        coordinate.artifact_id = expanded.artifact_id
        coordinate.version = expanded.version

        if project.source_directory is None:
            parent = self.workspace.parent_of(project)
            project.source_directory = (
                parent.source_directory if parent is not None and parent.source_directory else DEFAULT_SOURCE_DIRECTORY
            )
        if project.target is None:
            project.target = project.directory / coordinate.jar_name()
        if project.is_jar() and not _is_within(project.directory, self.workspace.repository):
            project.build_from_source = True
            project.target = project.directory / BUILD_OUTPUT

    # -- expansion -------------------------------------------------------------

    def key_of(self, project: Project) -> str:
        return self.expand_coordinate(project, project.coordinate).key()

    def lookup_property(self, project: Project, name: str) -> str | None:
        """Look up a `${name}` placeholder in the context of `project`."""
        coordinate = project.coordinate
        builtins = {
            "groupId": coordinate.group_id,
            "artifactId": coordinate.artifact_id,
            "version": coordinate.version,
            "basedir": str(project.directory),
        }
        for prefix in ("project.", "pom."):
            if name.startswith(prefix) and name[len(prefix):] in builtins:
                return builtins[name[len(prefix):]]
        if name in builtins:
            return builtins[name]
        if name.startswith("project.parent.") and project.parent_coordinate is not None:
            field = name[len("project.parent."):]
            parent = project.parent_coordinate
            return {"groupId": parent.group_id, "artifactId": parent.artifact_id, "version": parent.version}.get(field)

        if name in project.properties:
            return project.properties[name]
        for ancestor in self.workspace.ancestors(project):
            if name in ancestor.properties:
                return ancestor.properties[name]

        if name.startswith("env."):
            return os.environ.get(name[len("env."):])
        if name == "user.home":
            return str(Path.home())
        if name == "java.home":
            java_home = os.environ.get("JAVA_HOME")
            return str(Path(java_home) / "jre") if java_home else None
        return None

    def expand(self, project: Project, text: str | None) -> str | None:
        if text is None or not has_placeholders(text):
            return text
        return resolve_placeholders(text, lambda name: self.lookup_property(project, name))

    def expand_coordinate(self, project: Project, coordinate: Coordinate) -> Coordinate:
        return coordinate.model_copy(
            update={
                "group_id": self.expand(project, coordinate.group_id),
                "artifact_id": self.expand(project, coordinate.artifact_id),
                "version": self.expand(project, coordinate.version),
                "classifier": self.expand(project, coordinate.classifier),
                "system_path": self.expand(project, coordinate.system_path),
            }
        )

    def managed_version(self, project: Project, coordinate: Coordinate) -> str | None:
        """Find a dependencyManagement version for `coordinate` along the parent chain."""
        key = coordinate.key()
        for owner in (project, *self.workspace.ancestors(project)):
            for managed in owner.managed_dependencies.values():
                expanded = self.expand_coordinate(owner, managed)
                if expanded.key() == key and expanded.version:
                    return expanded.version
        return None

    def repositories_for(self, project: Project | None) -> list[str]:
        """Declared repositories along the parent chain, then the configured defaults."""
        urls: list[str] = []
        if project is not None:
            for owner in (project, *self.workspace.ancestors(project)):
                urls.extend(self.expand(owner, url) or url for url in owner.repositories)
        urls.extend(self.config.remote_repositories)
        result: list[str] = []
        for url in urls:
            url = url if url.endswith("/") else url + "/"
            if url not in result and not has_placeholders(url):
                result.append(url)
        return result

    # -- dependencies ----------------------------------------------------------

    def effective_dependencies(self, project: Project) -> Iterator[tuple[Project, Coordinate]]:
        """Yield `(declaring project, dependency)` for own and inherited dependencies.

        A dependency declared closer to `project` hides one with the same key
        declared by an ancestor.
        """
        seen: set[str] = set()
        for owner in (project, *self.workspace.ancestors(project)):
            for dependency in owner.dependencies:
                self.prepare_dependency(owner, dependency)
                if dependency.key() in seen:
                    continue
                seen.add(dependency.key())
                yield owner, dependency

    def prepare_dependency(self, owner: Project, dependency: Coordinate) -> Coordinate:
        """Expand placeholders and fill in a managed version, in place."""
        expanded = self.expand_coordinate(owner, dependency)
        dependency.group_id = expanded.group_id
        dependency.artifact_id = expanded.artifact_id
        dependency.classifier = expanded.classifier
        dependency.system_path = expanded.system_path
        dependency.version = expanded.version or self.managed_version(owner, expanded)
        return dependency

    def wants_dependency(self, project: Project, dependency: Coordinate) -> bool:
        if project.build_from_source:
            return True
        return dependency.scope not in ("test", "provided") and not dependency.optional

    def resolve_dependencies(self, project: Project) -> None:
        """Resolve the dependencies of `project` and all its descendants.

        Dependencies that cannot be found are only logged; the build step
        reports them if it actually needs them.
        """
        stack = [project]
        while stack:
            current = stack.pop()
            if id(current) in self._dependencies_resolved:
                continue
            if any(current is p for p in self._parsing.values()):
                # still being linked; its own resolution walks it afterwards
                continue
            self._dependencies_resolved.add(id(current))
            self._record("dependencies", id(current))
            for _, dependency in self.effective_dependencies(current):
                if not self.wants_dependency(current, dependency):
                    continue
                if self.find_project(dependency, requester=current) is None:
                    logger.debug("Deferring missing dependency {} of {}", dependency.compact(), current)
            stack.extend(reversed(current.children))

    def find_project(
        self,
        coordinate: Coordinate,
        requester: Project | None = None,
        download: bool | None = None,
    ) -> Project | None:
        """Find the project for `coordinate`: cache, local repository, then remote.

        Snapshot and range versions are pinned first (`coordinate.resolved_version`).

        Args:
            coordinate: The (already expanded) coordinate to look up.
            requester: Project whose declared repositories are tried first.
            download: Override automatic download; never enables it when offline.

        Raises:
            IntegrityError: If a downloaded file fails verification.
        """
        allow_download = self.config.can_download() if download is None else download and self.config.can_download()

        cached = self.workspace.lookup(coordinate.key())
        if cached is not None:
            if coordinate.resolved_version is None:
                cached_version = cached.coordinate.effective_version()
                if is_snapshot(coordinate.version):
                    coordinate.resolved_version = cached_version
                elif is_range(coordinate.version):
                    if VersionRange.parse(coordinate.version or "").contains(cached_version):
                        coordinate.resolved_version = cached_version
                    else:
                        logger.debug(
                            "Cached {} is outside the requested range {}", cached.coordinate.compact(), coordinate.version
                        )
            return cached

        if coordinate.system_path:
            system_path = Path(coordinate.system_path)
            if system_path.exists():
                return self.workspace.fake_project(system_path, coordinate)
            return None

        if not coordinate.version:
            return None

        downloaded = False
        if is_range(coordinate.version) or is_snapshot(coordinate.version):
            if allow_download:
                downloaded = self.download(coordinate, requester=requester)
            if coordinate.resolved_version is None:
                self.workspace.remote.resolve_locally(coordinate)
            if is_range(coordinate.version) and coordinate.resolved_version is None:
                return None

        project = self._find_local(coordinate)
        if project is None and allow_download and not downloaded:
            if self.download(coordinate, requester=requester):
                project = self._find_local(coordinate)
        return project

    def _local_candidates(self, coordinate: Coordinate) -> list[Coordinate]:
        candidates = [coordinate]
        if is_snapshot(coordinate.version) and coordinate.resolved_version:
            candidates.append(coordinate.model_copy(update={"resolved_version": None}))
        return candidates

    def _find_local(self, coordinate: Coordinate) -> Project | None:
        directory = self.workspace.repository / coordinate.repository_path()
        for candidate in self._local_candidates(coordinate):
            pom = directory / candidate.pom_name()
            jar = directory / candidate.jar_name()
            if pom.exists():
                project = self.parse(pom, None, coordinate.classifier)
                if project is None:
                    continue
                if project.is_jar() and not project.build_from_source and jar.exists():
                    project.target = jar
                if candidate.resolved_version:
                    project.coordinate.resolved_version = candidate.resolved_version
                return project
            if jar.exists():
                return self.workspace.fake_project(jar, candidate)
        return None

    def download(self, coordinate: Coordinate, requester: Project | None = None) -> bool:
        """Try each candidate repository in turn until one delivers `coordinate`.

        Returns:
            True on success. Transport failures are logged and remembered for
            error messages; integrity failures propagate.
        """
        if not self.config.can_download():
            return False
        last_error: TransportError | None = None
        for url in self.repositories_for(requester):
            try:
                self.workspace.remote.download_and_verify(url, coordinate)
            except IntegrityError:
                raise
            except TransportError as exc:
                logger.debug("{} not available from {}: {}", coordinate.compact(), url, exc)
                last_error = exc
                continue
            self.download_errors.pop(coordinate.key(), None)
            return True
        if last_error is not None:
            logger.warning("Could not download {}: {}", coordinate.compact(), last_error)
            self.download_errors[coordinate.key()] = str(last_error)
        return False
