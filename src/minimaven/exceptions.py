"""Custom exceptions for MiniMaven."""

from __future__ import annotations

from pathlib import Path


class MiniMavenError(Exception):
    """Base exception for MiniMaven."""


class DescriptorError(MiniMavenError):
    """Raised when a pom.xml is malformed or lacks a required field."""

    def __init__(self, path: Path | str | None, message: str, field: str | None = None) -> None:
        self.path = path
        self.field = field
        location = f": {path}" if path is not None else ""
        super().__init__(f"{message}{location}")


class UnresolvedParentError(MiniMavenError):
    """Raised when a declared parent cannot be found locally or remotely."""


class MissingDependencyError(MiniMavenError):
    """Raised when a dependency is needed but not available in the local cache."""


class TransportError(MiniMavenError):
    """Raised when a remote resource cannot be downloaded."""

    def __init__(self, url: str, message: str | None = None) -> None:
        self.url = url
        super().__init__(message or f"Could not download {url}")


class OfflineError(TransportError):
    """Raised when a download is attempted while offline mode is set."""

    def __init__(self, url: str) -> None:
        super().__init__(url, f"Offline mode is set, refusing to download {url}")


class IntegrityError(MiniMavenError):
    """Raised when a downloaded file does not match its SHA-1 side-car."""

    def __init__(self, url: str, expected: str, actual: str) -> None:
        self.url = url
        self.expected = expected
        self.actual = actual
        super().__init__(f"SHA1 mismatch for {url}: expected {expected}, actual {actual}")


class CompileError(MiniMavenError):
    """Raised when the compiler reports a failure."""

    def __init__(self, detail: object) -> None:
        self.detail = detail
        super().__init__(f"Compile error: {detail}")


class ProcessError(MiniMavenError):
    """Raised when a child process exits with a non-zero status."""

    def __init__(self, args: list[str], returncode: int, stderr: str) -> None:
        self.command = args
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"Error executing {args} (exit {returncode})\n{stderr}")
