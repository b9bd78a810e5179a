"""Pydantic models for Maven coordinates and projects."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field

from minimaven.versions import is_range


class Coordinate(BaseModel):
    """Maven coordinates (GroupId, ArtifactId, Version) plus dependency attributes.

    `version` is kept as written in the descriptor; `resolved_version` holds
    the concrete version once a snapshot or version range has been resolved.
    """

    group_id: str | None = None
    artifact_id: str | None = None
    version: str | None = None
    classifier: str | None = None
    resolved_version: str | None = None
    aggregate: bool = False
    scope: str | None = None
    optional: bool = False
    system_path: str | None = None
    relative_path: str | None = None

    def key(self) -> str:
        """Return the cache identity of this coordinate (version excluded).

        Returns:
            A string like `groupId:artifactId` or `groupId:artifactId:classifier`.
        """
        key = f"{self.group_id}:{self.artifact_id}"
        if self.classifier:
            key += f":{self.classifier}"
        return key

    def compact(self) -> str:
        """Return a compact string representation.

        Returns:
            A string like `groupId:artifactId:version`.
        """
        return f"{self.group_id}:{self.artifact_id}:{self.effective_version()}"

    def effective_version(self) -> str | None:
        return self.resolved_version or self.version

    def _file_stem(self) -> str:
        return f"{self.artifact_id}-{self.effective_version()}"

    def jar_name(self) -> str:
        suffix = f"-{self.classifier}" if self.classifier else ""
        return f"{self._file_stem()}{suffix}.jar"

    def pom_name(self) -> str:
        return f"{self._file_stem()}.pom"

    def artifact_path(self) -> str:
        """Repository path of the artifact directory, without version."""
        return f"{(self.group_id or '').replace('.', '/')}/{self.artifact_id}/"

    def repository_path(self) -> str:
        """Repository path of the version directory.

        Snapshots live under their `-SNAPSHOT` directory; ranges under the
        resolved version.
        """
        version = self.version
        if is_range(version) and self.resolved_version:
            version = self.resolved_version
        return f"{self.artifact_path()}{version}/"

    def label(self) -> str:
        """Return a user-facing label for the coordinate.

        Returns:
            A formatted string including GAV and scope when present.
        """
        parts: list[str] = [self.compact()]
        if self.classifier:
            parts.append(f"(classifier={self.classifier})")
        if self.scope:
            parts.append(f"(scope={self.scope})")
        if self.optional:
            parts.append("(optional)")
        return " ".join(parts)

    def __str__(self) -> str:
        return self.compact()


class Project(BaseModel):
    """One buildable unit: a single module or an aggregator.

    The parent is referenced by coordinate key only; the Workspace owns every
    Project and resolves `parent_key` on demand.
    """

    coordinate: Coordinate = Field(default_factory=Coordinate)
    directory: Path
    descriptor: Path | None = None
    source_directory: str | None = None
    target: Path | None = None
    packaging: str | None = None
    parent_coordinate: Coordinate | None = None
    parent_key: str | None = None
    modules: list[str] = Field(default_factory=list)
    children: list["Project"] = Field(default_factory=list)
    dependencies: list[Coordinate] = Field(default_factory=list)
    managed_dependencies: dict[str, Coordinate] = Field(default_factory=dict)
    properties: dict[str, str] = Field(default_factory=dict)
    repositories: list[str] = Field(default_factory=list)
    build_from_source: bool = False
    include_implementation_build: bool = False
    synthetic: bool = False

    def key(self) -> str:
        return self.coordinate.key()

    def is_aggregator(self) -> bool:
        return self.packaging == "pom"

    def is_jar(self) -> bool:
        return not self.is_aggregator()

    def add_child(self, child: "Project") -> None:
        if not any(c is child for c in self.children):
            self.children.append(child)

    def __str__(self) -> str:
        return self.coordinate.compact()
