from __future__ import annotations

import logging
import shutil
import subprocess
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from .config import DEFAULT_SETTLE_DELAY_SECONDS
from .job_engine import BackupServiceError

LOG = logging.getLogger(__name__)

AZCOPY_EXECUTABLE_NAMES = ("azcopy.exe", "azcopy")
KEY_MASK = "****"

# Suppresses the console window on Windows; zero elsewhere.
_CREATION_FLAGS = getattr(subprocess, "CREATE_NO_WINDOW", 0)

# One worker for the whole process: at most one azcopy runs at a time.
_AZCOPY_QUEUE = ThreadPoolExecutor(max_workers=1, thread_name_prefix="azcopy")


class AzCopyNotFoundError(FileNotFoundError):
    """Raised when no azcopy executable can be located."""


class AzCopyError(BackupServiceError):
    """Raised when an azcopy invocation reports a failure."""

    def __init__(self, message: str, stderr: str = "", returncode: Optional[int] = None) -> None:
        super().__init__(message)
        self.stderr = stderr
        self.returncode = returncode


@dataclass(frozen=True)
class CopyCommand:
    source: str
    source_key: str
    dest: str
    dest_key: str
    recursive: bool = False

    def arguments(self) -> List[str]:
        return self._build(self.source_key, self.dest_key)

    def render(self) -> str:
        """Command line with both account keys masked, for logging."""
        return " ".join(self._build(KEY_MASK, KEY_MASK))

    def _build(self, source_key: str, dest_key: str) -> List[str]:
        args = [
            f"/source:{self.source}",
            f"/sourceKey:{source_key}",
            f"/dest:{self.dest}",
            f"/Destkey:{dest_key}",
        ]
        if self.recursive:
            args.append("/S")
        args.append("/Y")
        return args


@dataclass
class CopyResult:
    returncode: int
    stdout: str
    stderr: str

    @property
    def failed(self) -> bool:
        return self.returncode != 0 or bool(self.stderr.strip())


def locate_azcopy(path: Optional[Path] = None, search_root: Optional[Path] = None) -> Path:
    """Find azcopy: explicit path, then PATH, then a recursive search of
    ``search_root`` (the working directory when unset)."""
    if path:
        candidate = Path(path).expanduser()
        if candidate.is_file():
            return candidate
        LOG.warning("Configured azcopy path %s does not exist; searching elsewhere", candidate)

    on_path = shutil.which("azcopy")
    if on_path:
        return Path(on_path)

    root = Path(search_root).expanduser() if search_root else Path.cwd()
    found = _search(root)
    if found:
        return found
    raise AzCopyNotFoundError(f"azcopy executable not found on PATH or under {root}")


def _search(root: Path) -> Optional[Path]:
    if not root.is_dir():
        return None
    for name in AZCOPY_EXECUTABLE_NAMES:
        for candidate in sorted(root.rglob(name)):
            if candidate.is_file():
                return candidate
    return None


class AzCopyRunner:
    """Runs azcopy invocations one at a time through a process-wide queue."""

    def __init__(
        self,
        executable: Path,
        settle_delay: float = DEFAULT_SETTLE_DELAY_SECONDS,
        executor: Optional[Executor] = None,
    ) -> None:
        if settle_delay < 0:
            raise ValueError("settle_delay must not be negative")
        self._executable = Path(executable)
        self._settle_delay = settle_delay
        self._executor = executor or _AZCOPY_QUEUE
        LOG.info("Using azcopy from %s", self._executable)

    @property
    def executable(self) -> Path:
        return self._executable

    def submit(self, command: CopyCommand) -> "Future[CopyResult]":
        return self._executor.submit(self._invoke, command)

    def run(self, command: CopyCommand) -> CopyResult:
        return self.submit(command).result()

    def _invoke(self, command: CopyCommand) -> CopyResult:
        cmd = [str(self._executable), *command.arguments()]
        LOG.debug("Running %s %s", self._executable.name, command.render())
        try:
            completed = subprocess.run(
                cmd,
                capture_output=True,
                encoding="utf-8",
                errors="replace",
                creationflags=_CREATION_FLAGS,
            )
        except OSError as exc:
            LOG.error("Failed to start azcopy: %s", exc)
            raise AzCopyError(f"Failed to start azcopy: {exc}") from exc
        finally:
            # azcopy keeps its journal files open briefly after exiting.
            time.sleep(self._settle_delay)

        result = CopyResult(
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )
        if result.stdout.strip():
            LOG.info(result.stdout.strip())

        if result.failed:
            if result.stderr.strip():
                LOG.error(result.stderr.strip())
                message = result.stderr
            else:
                message = f"azcopy exited with status {result.returncode}"
                LOG.error(message)
            raise AzCopyError(message, stderr=result.stderr, returncode=result.returncode)
        return result
