"""The javac compile backend.

Picks a javac once (JAVA_HOME first, then PATH) and serializes every
invocation behind a single lock.
"""

from __future__ import annotations

import os
import shutil
import threading
from collections.abc import Sequence
from pathlib import Path

from loguru import logger

from minimaven.exceptions import CompileError, ProcessError
from minimaven.process import run_process


class JavacCompiler:
    """Compile Java sources by running javac."""

    def __init__(self, java_home: Path | None = None) -> None:
        home = java_home or os.environ.get("JAVA_HOME")
        self.java_home = Path(home) if home else None
        self._javac: str | None = None
        self._lock = threading.Lock()

    def _discover(self) -> str:
        if self.java_home is not None:
            for name in ("javac", "javac.exe"):
                candidate = self.java_home / "bin" / name
                if candidate.exists():
                    logger.debug("Found javac in JAVA_HOME: {}", candidate)
                    return str(candidate)
        on_path = shutil.which("javac")
        if on_path is None:
            raise CompileError("No javac found (set JAVA_HOME or put javac on the PATH)")
        logger.debug("Using javac from PATH: {}", on_path)
        return on_path

    def compile(self, source_files: Sequence[Path], classpath: Sequence[Path], output_dir: Path) -> None:
        """Compile `source_files` into `output_dir`.

        Raises:
            CompileError: If javac cannot be found or reports errors.
        """
        output_dir.mkdir(parents=True, exist_ok=True)
        args = ["-d", str(output_dir), "-encoding", "UTF-8"]
        if classpath:
            args += ["-classpath", os.pathsep.join(str(p) for p in classpath)]
        args += [str(f) for f in source_files]

        with self._lock:
            if self._javac is None:
                self._javac = self._discover()
            try:
                run_process([self._javac, *args])
            except ProcessError as exc:
                raise CompileError(exc.stderr.strip() or f"javac exited with {exc.returncode}") from exc
