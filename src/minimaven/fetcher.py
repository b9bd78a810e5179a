"""Download remote files together with their SHA-1 side-car and install them atomically."""

from __future__ import annotations

import hashlib
import os
from pathlib import Path

import httpx
from loguru import logger

from minimaven.config import USER_AGENT, BuildConfig
from minimaven.exceptions import IntegrityError, OfflineError, TransportError


_CHUNK_SIZE = 131072


def _unlink(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass


def _parse_sha1(sidecar: Path) -> str:
    """Return the hex digest recorded in a `.sha1` file.

    Repositories write either the bare digest or `digest  filename`.
    """
    content = sidecar.read_text(encoding="ascii", errors="replace").strip()
    return content.split()[0].lower() if content else ""


class ChecksumFetcher:
    """Fetch `url` and `url.sha1`, verify, then move both into the local cache.

    A failed fetch is never retried here; callers decide whether to fall back
    to an already cached copy.
    """

    def __init__(self, config: BuildConfig, client: httpx.Client | None = None) -> None:
        self.config = config
        self._client = client

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=self.config.timeout, follow_redirects=True)
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def download(self, url: str, directory: Path, file_name: str) -> Path:
        """Stream `url` into `directory/file_name`.

        Raises:
            OfflineError: If offline mode is set.
            TransportError: On any network failure or non-2xx response.
        """
        if self.config.offline:
            raise OfflineError(url)
        logger.debug("Trying to download {}", url)
        directory.mkdir(parents=True, exist_ok=True)
        result = directory / file_name
        try:
            with self.client.stream("GET", url, headers={"User-Agent": USER_AGENT}) as response:
                response.raise_for_status()
                with result.open("wb") as out:
                    for chunk in response.iter_bytes(_CHUNK_SIZE):
                        out.write(chunk)
        except httpx.HTTPStatusError as exc:
            _unlink(result)
            raise TransportError(url, f"Could not download {url}: HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            _unlink(result)
            raise TransportError(url, f"Could not download {url}: {exc}") from exc
        logger.debug("Downloaded {} to {}", url, result)
        return result

    def fetch_verified(self, url: str, directory: Path, file_name: str | None = None) -> Path:
        """Download `url` and install it only if it matches `url.sha1`.

        Args:
            url: Remote file URL.
            directory: Destination directory, created when missing.
            file_name: Installed file name (default: last URL segment).

        Raises:
            IntegrityError: If the SHA-1 does not match; nothing is installed.
            TransportError: On network failure.
            OfflineError: If offline mode is set.

        Returns:
            Path of the installed file.
        """
        if file_name is None:
            file_name = url.rsplit("/", 1)[-1]

        sha1 = self.download(url + ".sha1", directory, file_name + ".sha1.new")
        try:
            downloaded = self.download(url, directory, file_name + ".new")
        except TransportError:
            _unlink(sha1)
            raise

        digest = hashlib.sha1()
        with downloaded.open("rb") as fh:
            for chunk in iter(lambda: fh.read(_CHUNK_SIZE), b""):
                digest.update(chunk)
        actual = digest.hexdigest()
        expected = _parse_sha1(sha1)

        if expected != actual:
            _unlink(downloaded)
            _unlink(sha1)
            raise IntegrityError(url, expected, actual)

        target = directory / file_name
        # os.replace overwrites an existing target on every platform
        os.replace(downloaded, target)
        os.replace(sha1, directory / (file_name + ".sha1"))
        return target
