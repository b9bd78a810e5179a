from __future__ import annotations

from pathlib import Path

import httpx
import pytest

from conftest import FakeRemote, sha1_hex

from minimaven.config import USER_AGENT, BuildConfig
from minimaven.exceptions import IntegrityError, OfflineError, TransportError
from minimaven.fetcher import ChecksumFetcher


BASE = "https://repo.example.org/maven2/"
JAR_PATH = "org/example/lib/1.0/lib-1.0.jar"


@pytest.fixture
def online_config(tmp_path: Path) -> BuildConfig:
    return BuildConfig(offline=False, download_automatically=True, repository=tmp_path / "repo")


def test_fetch_verified_installs_file_and_sidecar(tmp_path: Path, online_config: BuildConfig, remote: FakeRemote) -> None:
    data = b"jar bytes" * 1000
    remote.add(JAR_PATH, data)
    fetcher = ChecksumFetcher(online_config, client=remote.client())
    dest = tmp_path / "out" / "nested"

    installed = fetcher.fetch_verified(BASE + JAR_PATH, dest)

    assert installed == dest / "lib-1.0.jar"
    assert installed.read_bytes() == data
    assert (dest / "lib-1.0.jar.sha1").read_text() == sha1_hex(data)
    assert sorted(p.name for p in dest.iterdir()) == ["lib-1.0.jar", "lib-1.0.jar.sha1"]
    # side-car first, then the file itself
    assert remote.requests == [BASE + JAR_PATH + ".sha1", BASE + JAR_PATH]


def test_fetch_verified_accepts_sidecar_with_file_name(tmp_path: Path, online_config: BuildConfig, remote: FakeRemote) -> None:
    data = b"payload"
    remote.add(JAR_PATH, data, sha1=sha1_hex(data).upper() + "  lib-1.0.jar\n")
    fetcher = ChecksumFetcher(online_config, client=remote.client())

    installed = fetcher.fetch_verified(BASE + JAR_PATH, tmp_path, "renamed.jar")
    assert installed == tmp_path / "renamed.jar"


def test_corrupted_download_is_never_installed(tmp_path: Path, online_config: BuildConfig, remote: FakeRemote) -> None:
    data = bytearray(b"original artifact bytes")
    checksum = sha1_hex(bytes(data))
    data[3] ^= 0xFF
    remote.add(JAR_PATH, bytes(data), sha1=checksum)
    fetcher = ChecksumFetcher(online_config, client=remote.client())

    with pytest.raises(IntegrityError) as excinfo:
        fetcher.fetch_verified(BASE + JAR_PATH, tmp_path)

    assert excinfo.value.expected == checksum
    assert excinfo.value.actual == sha1_hex(bytes(data))
    assert checksum in str(excinfo.value)
    assert not (tmp_path / "lib-1.0.jar").exists()
    assert list(tmp_path.iterdir()) == []


def test_corrupted_download_keeps_previous_copy(tmp_path: Path, online_config: BuildConfig, remote: FakeRemote) -> None:
    (tmp_path / "lib-1.0.jar").write_bytes(b"cached")
    remote.add(JAR_PATH, b"new", sha1=sha1_hex(b"other"))
    fetcher = ChecksumFetcher(online_config, client=remote.client())

    with pytest.raises(IntegrityError):
        fetcher.fetch_verified(BASE + JAR_PATH, tmp_path)
    assert (tmp_path / "lib-1.0.jar").read_bytes() == b"cached"


def test_missing_remote_file_is_transport_error(tmp_path: Path, online_config: BuildConfig, remote: FakeRemote) -> None:
    fetcher = ChecksumFetcher(online_config, client=remote.client())
    with pytest.raises(TransportError) as excinfo:
        fetcher.fetch_verified(BASE + JAR_PATH, tmp_path)
    assert "404" in str(excinfo.value)
    assert list(tmp_path.iterdir()) == []


def test_network_failure_is_transport_error(tmp_path: Path, online_config: BuildConfig) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    fetcher = ChecksumFetcher(online_config, client=httpx.Client(transport=httpx.MockTransport(handler)))
    with pytest.raises(TransportError):
        fetcher.fetch_verified(BASE + JAR_PATH, tmp_path)


def test_offline_mode_refuses_to_download(tmp_path: Path, remote: FakeRemote) -> None:
    remote.add(JAR_PATH, b"data")
    fetcher = ChecksumFetcher(BuildConfig(offline=True), client=remote.client())
    with pytest.raises(OfflineError):
        fetcher.fetch_verified(BASE + JAR_PATH, tmp_path)
    assert remote.requests == []


def test_user_agent_is_sent(tmp_path: Path, online_config: BuildConfig) -> None:
    agents: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        agents.append(request.headers["User-Agent"])
        return httpx.Response(200, content=sha1_hex(b"x").encode() if request.url.path.endswith(".sha1") else b"x")

    fetcher = ChecksumFetcher(online_config, client=httpx.Client(transport=httpx.MockTransport(handler)))
    fetcher.fetch_verified(BASE + JAR_PATH, tmp_path)
    assert agents == [USER_AGENT, USER_AGENT]
