"""Snapshot and version-range resolution against remote Maven repositories.

Both protocols keep a local marker file (a copy of the last fetched
`maven-metadata.xml`) whose modification time gates how often the remote
repository is asked again.
"""

from __future__ import annotations

import time
from pathlib import Path

from loguru import logger

from minimaven.config import BuildConfig
from minimaven.exceptions import TransportError
from minimaven.fetcher import ChecksumFetcher
from minimaven.models import Coordinate
from minimaven.parser import is_aggregator_descriptor, iter_descriptor_events
from minimaven.versions import SNAPSHOT_SUFFIX, VersionRange, highest_matching, is_range, is_snapshot

_SNAPSHOT_QUALIFIER = SNAPSHOT_SUFFIX[1:]


SNAPSHOT_MARKER = "maven-metadata-snapshot.xml"
VERSION_MARKER = "maven-metadata-version.xml"
METADATA = "maven-metadata.xml"


def parse_snapshot_metadata(path: Path) -> str | None:
    """Extract the concrete snapshot version from a version-level maven-metadata.xml.

    Returns:
        e.g. `1.0-20230101.120000-3`, the plain `-SNAPSHOT` version for
        locally installed snapshots, or None if the file has no snapshot info.
    """
    fields: dict[str, str] = {}
    jar_value: str | None = None
    extension: str | None = None
    with path.open("rb") as fh:
        for elem_path, text in iter_descriptor_events(fh, path):
            if elem_path.startswith("metadata/versioning/snapshot/"):
                fields[elem_path.rsplit("/", 1)[1]] = text
            elif elem_path == "metadata/version":
                fields["version"] = text
            elif elem_path == "metadata/versioning/snapshotVersions/snapshotVersion/extension":
                extension = text
            elif elem_path == "metadata/versioning/snapshotVersions/snapshotVersion/value":
                if extension in (None, "jar") and jar_value is None:
                    jar_value = text
            elif elem_path == "metadata/versioning/snapshotVersions/snapshotVersion":
                extension = None

    if jar_value:
        return jar_value
    version = fields.get("version")
    timestamp = fields.get("timestamp")
    build_number = fields.get("buildNumber")
    if version and timestamp and build_number:
        base = version[: -len(_SNAPSHOT_QUALIFIER)] if is_snapshot(version) else version + "-"
        return f"{base}{timestamp}-{build_number}"
    if version and fields.get("localCopy") == "true":
        return version
    return None


def parse_version_metadata(path: Path) -> list[str]:
    """List the versions recorded in an artifact-level maven-metadata.xml."""
    versions: list[str] = []
    with path.open("rb") as fh:
        for elem_path, text in iter_descriptor_events(fh, path):
            if elem_path == "metadata/versioning/versions/version" and text:
                versions.append(text)
    return versions


class RemoteResolver:
    """Resolve snapshot/range versions and download artifacts into the local cache."""

    def __init__(self, config: BuildConfig, fetcher: ChecksumFetcher, repository: Path | None = None) -> None:
        self.config = config
        self.fetcher = fetcher
        self.repository = repository or config.repository

    def _is_fresh(self, marker: Path) -> bool:
        if not marker.exists():
            return False
        return time.time() - marker.stat().st_mtime < self.config.update_interval_seconds

    def _has_local_artifacts(self, coordinate: Coordinate) -> bool:
        directory = self.repository / coordinate.repository_path()
        return (directory / coordinate.jar_name()).exists() and (directory / coordinate.pom_name()).exists()

    def _fetch_metadata(self, repository_url: str, path: str, marker: Path, message: str) -> Path:
        logger.info(message)
        url = repository_url + path + METADATA
        return self.fetcher.fetch_verified(url, marker.parent, marker.name)

    def resolve_snapshot(self, repository_url: str, coordinate: Coordinate) -> bool:
        """Pin a -SNAPSHOT coordinate to its newest concrete build.

        Returns:
            True if the concrete jar and pom are already in the local cache.

        Raises:
            TransportError: If the metadata cannot be fetched or names no version.
        """
        directory = self.repository / coordinate.repository_path()
        marker = directory / SNAPSHOT_MARKER
        if self._is_fresh(marker):
            coordinate.resolved_version = parse_snapshot_metadata(marker)
            logger.debug("Snapshot metadata for {} is fresh", coordinate.key())
            return True

        self._fetch_metadata(
            repository_url,
            coordinate.repository_path(),
            marker,
            f"Checking for new snapshot of {coordinate.artifact_id}",
        )
        snapshot_version = parse_snapshot_metadata(marker)
        if snapshot_version is None:
            raise TransportError(repository_url, f"No version found in {repository_url}{coordinate.repository_path()}{METADATA}")
        coordinate.resolved_version = snapshot_version
        return self._has_local_artifacts(coordinate)

    def resolve_range(self, repository_url: str, coordinate: Coordinate) -> bool:
        """Pin a version-range coordinate to the highest matching remote version.

        Returns:
            True if the concrete jar and pom are already in the local cache.

        Raises:
            TransportError: If the metadata cannot be fetched or no version matches.
        """
        version_range = VersionRange.parse(coordinate.version or "")
        directory = self.repository / coordinate.artifact_path()
        marker = directory / VERSION_MARKER
        if self._is_fresh(marker):
            coordinate.resolved_version = highest_matching(version_range, parse_version_metadata(marker))
            logger.debug("Version metadata for {} is fresh", coordinate.key())
            return True

        self._fetch_metadata(
            repository_url,
            coordinate.artifact_path(),
            marker,
            f"Checking for new version of {coordinate.artifact_id}",
        )
        resolved = highest_matching(version_range, parse_version_metadata(marker))
        if resolved is None:
            raise TransportError(repository_url, f"No version matching {coordinate.version} in {repository_url}{coordinate.artifact_path()}{METADATA}")
        coordinate.resolved_version = resolved
        return self._has_local_artifacts(coordinate)

    def download_and_verify(self, repository_url: str, coordinate: Coordinate) -> None:
        """Make the coordinate's descriptor (and archive, unless an aggregator) local.

        Raises:
            TransportError: If a download fails.
            OfflineError: If offline mode is set and a download is needed.
            IntegrityError: If a checksum does not match.
        """
        if is_snapshot(coordinate.version):
            if self.resolve_snapshot(repository_url, coordinate) and self._locally_complete(coordinate):
                return
        elif is_range(coordinate.version):
            if self.resolve_range(repository_url, coordinate) and self._locally_complete(coordinate):
                return
            if coordinate.resolved_version is None:
                raise TransportError(repository_url, f"No version matching {coordinate.version} for {coordinate.key()}")

        path = coordinate.repository_path()
        directory = self.repository / path
        base_url = repository_url + path
        logger.info("Downloading {}", coordinate.artifact_id)
        pom = self.fetcher.fetch_verified(base_url + coordinate.pom_name(), directory)
        if not is_aggregator_descriptor(pom):
            self.fetcher.fetch_verified(base_url + coordinate.jar_name(), directory)

    def _locally_complete(self, coordinate: Coordinate) -> bool:
        if coordinate.resolved_version is None:
            return False
        directory = self.repository / coordinate.repository_path()
        pom = directory / coordinate.pom_name()
        if not pom.exists():
            return False
        return is_aggregator_descriptor(pom) or (directory / coordinate.jar_name()).exists()

    def resolve_locally(self, coordinate: Coordinate) -> str | None:
        """Pin a snapshot or range coordinate using only the local cache.

        Returns:
            The resolved version, or None when nothing suitable is cached.
        """
        if is_snapshot(coordinate.version):
            marker = self.repository / coordinate.repository_path() / SNAPSHOT_MARKER
            if marker.exists():
                candidate = coordinate.model_copy(update={"resolved_version": parse_snapshot_metadata(marker)})
                if candidate.resolved_version and self._locally_complete(candidate):
                    coordinate.resolved_version = candidate.resolved_version
            return coordinate.resolved_version

        if is_range(coordinate.version):
            directory = self.repository / coordinate.artifact_path()
            if not directory.is_dir():
                return None
            candidates = []
            for sub in sorted(directory.iterdir()):
                if not sub.is_dir():
                    continue
                probe = coordinate.model_copy(update={"resolved_version": sub.name})
                if (sub / probe.pom_name()).exists() or (sub / probe.jar_name()).exists():
                    candidates.append(sub.name)
            resolved = highest_matching(coordinate.version or "", candidates)
            if resolved is not None:
                coordinate.resolved_version = resolved
            return resolved

        return coordinate.version

