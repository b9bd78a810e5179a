"""Build configuration module.

Configuration is read from environment variables; the CLI may override
individual fields afterwards.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger


DEFAULT_UPDATE_INTERVAL = 24 * 60
DEFAULT_TIMEOUT = 60.0
DEFAULT_REMOTE_REPOSITORIES = (
    "https://repo1.maven.org/maven2/",
    "https://maven.scijava.org/content/groups/public/",
)
USER_AGENT = "MiniMaven/2.0.0-SNAPSHOT"


def _bool_env(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _default_repository() -> Path:
    return (Path.home() / ".m2" / "repository").resolve()


@dataclass
class BuildConfig:
    """Build configuration container.

    Attributes:
        offline: Disables every network fetch.
        download_automatically: Fetch missing parents and dependencies from the remote repositories.
        update_interval: Minutes before snapshot / version-range metadata is checked again.
        ignore_repositories: Treat all remote lookups as disabled, local cache only.
        verbose: Log progress (no effect on resolution outcome).
        debug: Log diagnostics (no effect on resolution outcome).
        repository: Root of the local artifact cache.
        remote_repositories: Base URLs tried, in order, after repositories declared in descriptors.
        timeout: Per-request network timeout in seconds.
    """

    offline: bool = False
    download_automatically: bool = False
    update_interval: int = DEFAULT_UPDATE_INTERVAL
    ignore_repositories: bool = False
    verbose: bool = False
    debug: bool = False
    repository: Path = field(default_factory=_default_repository)
    remote_repositories: tuple[str, ...] = DEFAULT_REMOTE_REPOSITORIES
    timeout: float = DEFAULT_TIMEOUT

    @classmethod
    def from_env(cls) -> "BuildConfig":
        """Create configuration from environment variables.

        Environment variables:
            MINIMAVEN_OFFLINE: "true" to disable network access (default: false)
            MINIMAVEN_DOWNLOAD: "true" to download missing artifacts (default: false)
            MINIMAVEN_UPDATE_INTERVAL: Staleness interval in minutes (default: 1440)
            MINIMAVEN_REPOSITORIES: "ignore" to skip all remote repositories
            MINIMAVEN_VERBOSE / MINIMAVEN_DEBUG: Logging verbosity
            MINIMAVEN_REPOSITORY: Local cache root (default: ~/.m2/repository)
            MINIMAVEN_REMOTE_REPOSITORIES: Comma-separated remote base URLs
            MINIMAVEN_TIMEOUT: Network timeout in seconds (default: 60)
        """
        update_interval = DEFAULT_UPDATE_INTERVAL
        raw_interval = os.getenv("MINIMAVEN_UPDATE_INTERVAL", "").strip()
        if raw_interval:
            try:
                update_interval = int(raw_interval)
                logger.info("Setting update interval to {} minutes", update_interval)
            except ValueError:
                logger.warning("Ignoring invalid update interval {}", raw_interval)

        timeout = DEFAULT_TIMEOUT
        raw_timeout = os.getenv("MINIMAVEN_TIMEOUT", "").strip()
        if raw_timeout:
            try:
                timeout = float(raw_timeout)
            except ValueError:
                logger.warning("Ignoring invalid timeout {}", raw_timeout)

        remotes = DEFAULT_REMOTE_REPOSITORIES
        raw_remotes = os.getenv("MINIMAVEN_REMOTE_REPOSITORIES", "").strip()
        if raw_remotes:
            remotes = tuple(u.strip() for u in raw_remotes.split(",") if u.strip())

        repository = os.getenv("MINIMAVEN_REPOSITORY")

        return cls(
            offline=_bool_env("MINIMAVEN_OFFLINE"),
            download_automatically=_bool_env("MINIMAVEN_DOWNLOAD"),
            update_interval=update_interval,
            ignore_repositories=os.getenv("MINIMAVEN_REPOSITORIES", "").strip().lower() == "ignore",
            verbose=_bool_env("MINIMAVEN_VERBOSE"),
            debug=_bool_env("MINIMAVEN_DEBUG"),
            repository=Path(repository).resolve() if repository else _default_repository(),
            remote_repositories=remotes,
            timeout=timeout,
        )

    def validate(self) -> None:
        """Validate the configuration.

        Raises:
            ValueError: If a setting is out of range.
        """
        if self.update_interval < 0:
            raise ValueError("MINIMAVEN_UPDATE_INTERVAL must not be negative")
        if self.timeout <= 0:
            raise ValueError("MINIMAVEN_TIMEOUT must be positive")
        for url in self.remote_repositories:
            if not url.startswith(("http://", "https://")):
                raise ValueError(f"Unsupported remote repository URL: {url}")

    def can_download(self) -> bool:
        """Whether a missing artifact may be fetched from a remote repository."""
        return self.download_automatically and not self.offline and not self.ignore_repositories

    def download_hint(self) -> str:
        """Explain which setting keeps a missing artifact from being downloaded."""
        if self.offline:
            return "offline mode is set (unset MINIMAVEN_OFFLINE)"
        if self.ignore_repositories:
            return "remote repositories are ignored (unset MINIMAVEN_REPOSITORIES)"
        if not self.download_automatically:
            return "automatic download is disabled (set MINIMAVEN_DOWNLOAD=true)"
        return "not found in any remote repository"

    @property
    def update_interval_seconds(self) -> float:
        return self.update_interval * 60.0
