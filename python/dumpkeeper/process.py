"""
External command invocation.

All tools (mysqldump, 7z/zip, package managers) are run through a
``ProcessRunner`` so stages never call ``subprocess`` directly and tests can
substitute a fake runner.
"""

from __future__ import annotations

import os
import subprocess
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Any, Protocol

from dumpkeeper.logging import get_logger

logger = get_logger(__name__)

# Exit status shells use for "command not found"
COMMAND_NOT_FOUND = 127

# stdout files may hold unencrypted database content
PRIVATE_FILE_MODE = 0o600


@dataclass
class ProcessResult:
    """Outcome of one external command."""

    args: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    duration_seconds: float = 0.0
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    def to_dict(self) -> dict[str, Any]:
        return {
            "command": self.args[0] if self.args else None,
            "returncode": self.returncode,
            "duration_seconds": round(self.duration_seconds, 3),
            "timed_out": self.timed_out,
        }


class CommandRunner(Protocol):
    """Anything that can run a command and report its result."""

    def run(
        self,
        args: Sequence[str],
        *,
        stdout_path: Path | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
        redact: Sequence[str] = (),
    ) -> ProcessResult:
        ...


@dataclass
class ProcessRunner:
    """
    Runs commands with ``subprocess.run`` and never raises for tool failures.

    A missing executable is reported as exit status 127 and a timeout as
    ``timed_out=True``, so callers only have to look at the result.
    """

    base_env: Mapping[str, str] = field(default_factory=lambda: dict(os.environ))

    def run(
        self,
        args: Sequence[str],
        *,
        stdout_path: Path | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
        redact: Sequence[str] = (),
    ) -> ProcessResult:
        """
        Run a command to completion.

        Args:
            args: Command and arguments.
            stdout_path: Stream stdout into this file (mode 0600) instead of
                capturing it.
            env: Extra environment variables layered over ``base_env``.
            timeout: Kill the command after this many seconds.
            redact: Argument values to mask in log output.

        Returns:
            ProcessResult describing the run.
        """
        args = [str(a) for a in args]
        merged_env = {**self.base_env, **(env or {})}
        shown = [("***" if a in redact else a) for a in args]

        logger.debug("process_started", command=shown)
        start = time.perf_counter()

        # OSError opening the sink propagates to the caller
        sink: IO[bytes] | None = _open_private(stdout_path) if stdout_path is not None else None
        try:
            completed = subprocess.run(
                args,
                stdout=sink if sink is not None else subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=merged_env,
                timeout=timeout,
                check=False,
            )
            result = ProcessResult(
                args=args,
                returncode=completed.returncode,
                stdout=_decode(completed.stdout),
                stderr=_decode(completed.stderr),
            )
        except FileNotFoundError as e:
            result = ProcessResult(args=args, returncode=COMMAND_NOT_FOUND, stderr=str(e))
        except subprocess.TimeoutExpired as e:
            result = ProcessResult(
                args=args,
                returncode=-1,
                stderr=_decode(e.stderr),
                timed_out=True,
            )
        finally:
            if sink is not None:
                sink.close()

        result.duration_seconds = time.perf_counter() - start
        logger.debug("process_finished", **result.to_dict())
        return result


def _open_private(path: Path) -> IO[bytes]:
    """Open ``path`` for writing, readable by the owner only."""
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, PRIVATE_FILE_MODE)
    try:
        # O_CREAT leaves the mode of an existing file alone
        os.fchmod(fd, PRIVATE_FILE_MODE)
        return os.fdopen(fd, "wb")
    except OSError:
        os.close(fd)
        raise


def _decode(data: bytes | str | None) -> str:
    if data is None:
        return ""
    if isinstance(data, str):
        return data
    return data.decode("utf-8", errors="replace")
