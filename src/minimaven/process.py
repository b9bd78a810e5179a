"""Run child processes without risking a full-pipe deadlock."""

from __future__ import annotations

import os
import subprocess
import sys
import threading
from collections.abc import Sequence
from enum import Enum
from pathlib import Path
from typing import IO

from loguru import logger

from minimaven.exceptions import ProcessError


QUOTABLES = " \"'"


class Platform(Enum):
    POSIX = "posix"
    WINDOWS = "windows"
    MSYS = "msys"

    @classmethod
    def current(cls) -> "Platform":
        if not sys.platform.startswith("win"):
            return cls.POSIX
        return cls.MSYS if os.environ.get("MSYSTEM") else cls.WINDOWS


def quote_arg(arg: str, platform: Platform, quotables: str = QUOTABLES) -> str:
    """Quote the characters of `arg` that Windows command lines would split on.

    POSIX arguments are returned unchanged.
    """
    if platform is Platform.POSIX:
        return arg
    parts: list[str] = []
    for c in arg:
        if c not in quotables:
            parts.append(c)
        elif c == '"':
            parts.append('\\"' if platform is Platform.MSYS else "'\"'")
        else:
            parts.append(f'"{c}"')
    return "".join(parts)


def format_command(args: Sequence[str], platform: Platform) -> str:
    if platform is Platform.POSIX:
        return " ".join(f"'{a}'" for a in args)
    return " ".join(quote_arg(a, platform) for a in args)


def _drain(stream: IO[bytes], sink: list[bytes]) -> None:
    for chunk in iter(lambda: stream.read(65536), b""):
        sink.append(chunk)
    stream.close()


def run_process(args: Sequence[str], cwd: Path | None = None) -> str:
    """Run `args` and return its standard output.

    Standard output and standard error are read on two threads, both joined
    before the exit code is looked at.

    Raises:
        ProcessError: If the process cannot be started or exits non-zero.
    """
    command = [str(a) for a in args]
    logger.debug("Executing: {}", format_command(command, Platform.current()))
    try:
        process = subprocess.Popen(
            command,
            cwd=str(cwd) if cwd is not None else None,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
    except OSError as exc:
        raise ProcessError(command, -1, str(exc)) from exc

    out: list[bytes] = []
    err: list[bytes] = []
    readers = [
        threading.Thread(target=_drain, args=(process.stdout, out), daemon=True),
        threading.Thread(target=_drain, args=(process.stderr, err), daemon=True),
    ]
    for reader in readers:
        reader.start()
    process.wait()
    for reader in readers:
        reader.join()

    stderr = b"".join(err).decode("utf-8", errors="replace")
    if process.returncode != 0:
        raise ProcessError(command, process.returncode, stderr)
    if stderr.strip():
        logger.debug(stderr.rstrip())
    return b"".join(out).decode("utf-8", errors="replace")


def implementation_build(path: Path) -> str | None:
    """Return the commit checked out in the git work tree containing `path`.

    Returns:
        The `git rev-parse HEAD` output, or None outside a work tree.

    Raises:
        ProcessError: If git fails inside a work tree.
    """
    current = path.resolve()
    for candidate in (current, *current.parents):
        if (candidate / ".git").exists():
            return run_process(["git", "rev-parse", "HEAD"], cwd=candidate).strip()
    return None
