"""Pytest configuration and fixtures for MiniMaven tests."""
from __future__ import annotations

import hashlib
from collections.abc import Callable, Iterator
from pathlib import Path

import httpx
import pytest
from loguru import logger

from minimaven.config import BuildConfig
from minimaven.fetcher import ChecksumFetcher
from minimaven.workspace import Workspace


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep MINIMAVEN_* settings of the developer's shell out of the tests."""
    for name in (
        "MINIMAVEN_OFFLINE",
        "MINIMAVEN_DOWNLOAD",
        "MINIMAVEN_UPDATE_INTERVAL",
        "MINIMAVEN_REPOSITORIES",
        "MINIMAVEN_VERBOSE",
        "MINIMAVEN_DEBUG",
        "MINIMAVEN_REPOSITORY",
        "MINIMAVEN_REMOTE_REPOSITORIES",
        "MINIMAVEN_TIMEOUT",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def repository(tmp_path: Path) -> Path:
    path = tmp_path / "repository"
    path.mkdir()
    return path


@pytest.fixture
def config(repository: Path) -> BuildConfig:
    return BuildConfig(
        offline=True,
        repository=repository.resolve(),
        remote_repositories=("https://repo.example.org/maven2/",),
    )


@pytest.fixture
def workspace(config: BuildConfig) -> Workspace:
    return Workspace(config)


def pom_xml(
    group_id: str | None,
    artifact_id: str | None,
    version: str | None,
    *,
    packaging: str | None = None,
    parent: tuple[str, str, str] | None = None,
    relative_path: str | None = None,
    modules: list[str] | None = None,
    dependencies: list[dict[str, str]] | None = None,
    managed: list[dict[str, str]] | None = None,
    properties: dict[str, str] | None = None,
    namespace: bool = True,
) -> str:
    """Render a small pom.xml."""
    parts = ['<?xml version="1.0" encoding="UTF-8"?>']
    parts.append('<project xmlns="http://maven.apache.org/POM/4.0.0">' if namespace else "<project>")
    parts.append("  <modelVersion>4.0.0</modelVersion>")
    if parent is not None:
        parts.append("  <parent>")
        parts.append(f"    <groupId>{parent[0]}</groupId>")
        parts.append(f"    <artifactId>{parent[1]}</artifactId>")
        parts.append(f"    <version>{parent[2]}</version>")
        if relative_path is not None:
            parts.append(f"    <relativePath>{relative_path}</relativePath>")
        parts.append("  </parent>")
    for tag, value in (("groupId", group_id), ("artifactId", artifact_id), ("version", version), ("packaging", packaging)):
        if value is not None:
            parts.append(f"  <{tag}>{value}</{tag}>")
    if properties:
        parts.append("  <properties>")
        parts.extend(f"    <{k}>{v}</{k}>" for k, v in properties.items())
        parts.append("  </properties>")
    if modules:
        parts.append("  <modules>")
        parts.extend(f"    <module>{m}</module>" for m in modules)
        parts.append("  </modules>")

    def deps(entries: list[dict[str, str]]) -> list[str]:
        out = ["  <dependencies>"]
        for entry in entries:
            out.append("    <dependency>")
            out.extend(f"      <{k}>{v}</{k}>" for k, v in entry.items())
            out.append("    </dependency>")
        out.append("  </dependencies>")
        return out

    if managed:
        parts.append("  <dependencyManagement>")
        parts.extend("  " + line for line in deps(managed))
        parts.append("  </dependencyManagement>")
    if dependencies:
        parts.extend(deps(dependencies))
    parts.append("</project>")
    return "\n".join(parts) + "\n"


@pytest.fixture
def write_pom() -> Callable[..., Path]:
    """Write a pom.xml into a directory (created as needed) and return its path."""

    def _write(directory: Path, *args, **kwargs) -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / "pom.xml"
        path.write_text(pom_xml(*args, **kwargs), encoding="utf-8")
        return path

    return _write


def install_artifact(
    repository: Path,
    group_id: str,
    artifact_id: str,
    version: str,
    *,
    jar: bool = True,
    pom: bool = True,
    file_version: str | None = None,
    **pom_kwargs,
) -> Path:
    """Place an artifact in the local repository layout and return its directory."""
    directory = repository / group_id.replace(".", "/") / artifact_id / version
    directory.mkdir(parents=True, exist_ok=True)
    stem = f"{artifact_id}-{file_version or version}"
    if pom:
        (directory / f"{stem}.pom").write_text(
            pom_xml(group_id, artifact_id, version, **pom_kwargs), encoding="utf-8"
        )
    if jar:
        (directory / f"{stem}.jar").write_bytes(b"PK\x03\x04fake-jar")
    return directory


def sha1_hex(data: bytes) -> str:
    return hashlib.sha1(data).hexdigest()


class FakeRemote:
    """An in-memory Maven repository served through httpx.MockTransport."""

    def __init__(self, base_url: str = "https://repo.example.org/maven2/") -> None:
        self.base_url = base_url
        self.files: dict[str, bytes] = {}
        self.requests: list[str] = []

    def add(self, path: str, data: bytes, sha1: str | None = None) -> None:
        self.files[path] = data
        self.files[path + ".sha1"] = (sha1 if sha1 is not None else sha1_hex(data)).encode("ascii")

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        path = url[len(self.base_url):] if url.startswith(self.base_url) else url
        if path in self.files:
            return httpx.Response(200, content=self.files[path])
        return httpx.Response(404)

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler))

    def fetched(self, suffix: str) -> list[str]:
        return [u for u in self.requests if u.endswith(suffix)]


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def online_workspace(config: BuildConfig, remote: FakeRemote) -> Workspace:
    config.offline = False
    config.download_automatically = True
    return Workspace(config, fetcher=ChecksumFetcher(config, client=remote.client()))


@pytest.fixture
def log_messages() -> Iterator[list[str]]:
    """Collect loguru messages of level WARNING and above."""
    messages: list[str] = []
    handler_id = logger.add(lambda m: messages.append(m.record["message"]), level="WARNING")
    yield messages
    logger.remove(handler_id)
