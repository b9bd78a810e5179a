"""Parse Maven pom.xml files using lxml.

Descriptors are streamed with `etree.iterparse` and flattened into
`(element_path, text)` events such as `("project/parent/version", "1.0")`;
elements are released as soon as they have been reported.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterator
from contextlib import closing
from pathlib import Path
from typing import IO, Mapping

from loguru import logger
from lxml import etree

from minimaven.exceptions import DescriptorError
from minimaven.models import Coordinate, Project


_PLACEHOLDER_RE = re.compile(r"\$\{([^}]+)\}")

_DEPENDENCY = "project/dependencies/dependency"
_MANAGED_DEPENDENCY = "project/dependencyManagement/dependencies/dependency"
_IMPLEMENTATION_ENTRIES = (
    "project/build/plugins/plugin/configuration/archive/manifest/addDefaultImplementationEntries"
)


def iter_descriptor_events(stream: IO[bytes], source: Path | str | None = None) -> Iterator[tuple[str, str]]:
    """Stream a descriptor as `(element_path, text)` pairs.

    Paths use namespace-free local names joined by `/`. Each element is
    reported when it ends; container elements carry empty text.

    Args:
        stream: Binary stream positioned at the start of the XML document.
        source: File name used in error messages.

    Raises:
        DescriptorError: If the XML cannot be parsed.
    """
    stack: list[str] = []
    try:
        for event, el in etree.iterparse(
            stream,
            events=("start", "end"),
            resolve_entities=False,
            no_network=True,
            remove_comments=True,
            remove_pis=True,
        ):
            if event == "start":
                stack.append(etree.QName(el).localname)
                continue
            text = (el.text or "").strip()
            path = "/".join(stack)
            stack.pop()
            el.clear(keep_tail=True)
            yield path, text
    except etree.XMLSyntaxError as exc:
        raise DescriptorError(source, f"Failed to parse pom.xml ({exc})") from exc


def is_aggregator_descriptor(source: Path | IO[bytes]) -> bool:
    """Tell whether a descriptor declares `<packaging>pom</packaging>`.

    Stops reading at the packaging element, so only the head of the file is
    parsed in the common case.

    Args:
        source: A pom file path or an open binary stream.

    Returns:
        True for aggregator descriptors, False otherwise (including missing
        or unreadable files).
    """
    if isinstance(source, Path):
        if not source.exists():
            return False
        with source.open("rb") as fh:
            return is_aggregator_descriptor(fh)

    try:
        with closing(iter_descriptor_events(source)) as events:
            for path, text in events:
                if path == "project/packaging":
                    return text == "pom"
    except DescriptorError as exc:
        logger.warning("Could not scan descriptor for packaging: {}", exc)
    return False


def resolve_placeholders(value: str, props: Mapping[str, str] | Callable[[str], str | None]) -> str:
    """Resolve ${...} placeholders using provided properties.

    Unknown placeholders are preserved as-is.
    """
    lookup = props.get if isinstance(props, Mapping) else props
    current = value
    for _ in range(5):
        changed = False

        def _sub(m: re.Match[str]) -> str:
            nonlocal changed
            key = m.group(1)
            replacement = lookup(key)
            if replacement:
                changed = True
                return replacement
            return m.group(0)

        nxt = _PLACEHOLDER_RE.sub(_sub, current)
        current = nxt
        if not changed:
            break
    return current


def has_placeholders(value: str | None) -> bool:
    return value is not None and _PLACEHOLDER_RE.search(value) is not None


def _bool_text(value: str | None) -> bool:
    return value is not None and value.strip().lower() == "true"


class _DescriptorHandler:
    """Collects descriptor events into a raw Project."""

    def __init__(self, project: Project) -> None:
        self.project = project
        self.parent: dict[str, str] = {}
        self.dependency: dict[str, str] = {}
        self.managed: dict[str, str] = {}

    def handle(self, path: str, text: str) -> None:
        project = self.project
        coordinate = project.coordinate

        if path.startswith(_DEPENDENCY + "/"):
            field = path[len(_DEPENDENCY) + 1:]
            if "/" not in field:
                self.dependency[field] = text
            return
        if path == _DEPENDENCY:
            dep = self._coordinate(self.dependency)
            if dep is not None:
                project.dependencies.append(dep)
            self.dependency = {}
            return
        if path.startswith(_MANAGED_DEPENDENCY + "/"):
            field = path[len(_MANAGED_DEPENDENCY) + 1:]
            if "/" not in field:
                self.managed[field] = text
            return
        if path == _MANAGED_DEPENDENCY:
            dep = self._coordinate(self.managed)
            if dep is not None:
                project.managed_dependencies[dep.key()] = dep
            self.managed = {}
            return

        if path == "project/groupId":
            coordinate.group_id = text or None
        elif path == "project/artifactId":
            coordinate.artifact_id = text or None
        elif path == "project/version":
            coordinate.version = text or None
        elif path == "project/packaging":
            project.packaging = text or None
            coordinate.aggregate = text == "pom"
        elif path.startswith("project/parent/"):
            self.parent[path[len("project/parent/"):]] = text
        elif path == "project/parent":
            project.parent_coordinate = Coordinate(
                group_id=self.parent.get("groupId") or None,
                artifact_id=self.parent.get("artifactId") or None,
                version=self.parent.get("version") or None,
                relative_path=self.parent.get("relativePath") or None,
            )
        elif path == "project/modules/module":
            if text:
                project.modules.append(text)
        elif path.startswith("project/properties/") and path.count("/") == 2:
            project.properties[path[len("project/properties/"):]] = text
        elif path == "project/repositories/repository/url":
            if text:
                project.repositories.append(text if text.endswith("/") else text + "/")
        elif path == "project/build/sourceDirectory":
            if text:
                project.source_directory = text
        elif path == _IMPLEMENTATION_ENTRIES:
            if _bool_text(text):
                project.include_implementation_build = True

    @staticmethod
    def _coordinate(fields: dict[str, str]) -> Coordinate | None:
        group_id = fields.get("groupId")
        artifact_id = fields.get("artifactId")
        if not group_id or not artifact_id:
            logger.debug("Skipping dependency without groupId/artifactId: {}", fields)
            return None
        return Coordinate(
            group_id=group_id,
            artifact_id=artifact_id,
            version=fields.get("version") or None,
            classifier=fields.get("classifier") or None,
            scope=fields.get("scope") or None,
            optional=_bool_text(fields.get("optional")),
            system_path=fields.get("systemPath") or None,
            aggregate=fields.get("type") == "pom",
        )


def parse_descriptor(
    stream: IO[bytes],
    directory: Path,
    source: Path | None = None,
) -> Project:
    """Parse a descriptor stream into a raw, unlinked Project.

    Notes:
        - Namespace handling: element paths use local names, so descriptors
          work with or without the POM namespace.
        - No inheritance or placeholder expansion happens here; the graph
          builder does both once the parent is known.

    Args:
        stream: Binary stream of the pom.xml.
        directory: Directory containing the descriptor.
        source: Descriptor path, for error messages.

    Raises:
        DescriptorError: If the XML is malformed or the root is not `<project>`.

    Returns:
        A Project populated with the descriptor's own declarations.
    """
    project = Project(directory=directory, descriptor=source)
    handler = _DescriptorHandler(project)
    root_seen = False
    for path, text in iter_descriptor_events(stream, source):
        if path == "project":
            root_seen = True
        handler.handle(path, text)
    if not root_seen:
        raise DescriptorError(source, "Missing <project> root element", field="project")
    return project


def parse_pom(path: str | Path) -> Project:
    """Parse a pom.xml file into a raw Project.

    Raises:
        DescriptorError: If the file does not exist or cannot be parsed.
    """
    pom_path = Path(path)
    if not pom_path.exists():
        raise DescriptorError(pom_path, "pom.xml not found")
    with pom_path.open("rb") as fh:
        return parse_descriptor(fh, pom_path.resolve().parent, pom_path)
