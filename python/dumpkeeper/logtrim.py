"""
Log trimmer: keep a log directory under a byte cap.

Oldest-first eviction across the whole tree. Rotated/compressed files are
deleted; plain files are truncated to zero in place, because a web server
may still hold them open and keeps writing to the same inode.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from dumpkeeper.logging import get_logger
from dumpkeeper.models import LogDirectoryState, LogFileEntry

if TYPE_CHECKING:
    from collections.abc import Iterable

    from dumpkeeper.config import Config

logger = get_logger(__name__)


@dataclass
class TrimResult:
    """What one enforcement pass did."""

    directory: Path
    cap_bytes: int | None
    bytes_before: int = 0
    bytes_after: int = 0
    deleted: list[Path] = field(default_factory=list)
    truncated: list[Path] = field(default_factory=list)
    stopped_early: bool = False

    @property
    def actions(self) -> int:
        return len(self.deleted) + len(self.truncated)

    @property
    def under_cap(self) -> bool:
        return self.cap_bytes is None or self.bytes_after <= self.cap_bytes

    def to_dict(self) -> dict[str, Any]:
        return {
            "directory": str(self.directory),
            "cap_bytes": self.cap_bytes,
            "bytes_before": self.bytes_before,
            "bytes_after": self.bytes_after,
            "deleted": len(self.deleted),
            "truncated": len(self.truncated),
            "stopped_early": self.stopped_early,
            "under_cap": self.under_cap,
        }


class LogTrimmer:
    """Enforces ``cap_bytes`` on ``directory``."""

    def __init__(
        self,
        directory: Path,
        cap_bytes: int | None,
        archive_extensions: Iterable[str] = (".gz", ".zip"),
    ) -> None:
        self.directory = Path(directory)
        self.cap_bytes = cap_bytes
        self.archive_extensions = tuple(ext.lower() for ext in archive_extensions)

    @classmethod
    def from_config(cls, config: Config) -> LogTrimmer:
        return cls(
            directory=config.log_trim.directory,
            cap_bytes=config.retention.log_max_bytes,
            archive_extensions=config.log_trim.archive_extensions,
        )

    def is_archive(self, path: Path) -> bool:
        return path.name.lower().endswith(self.archive_extensions)

    def scan(self) -> LogDirectoryState:
        """Walk the tree and collect every regular file."""
        state = LogDirectoryState(directory=self.directory)
        if not self.directory.is_dir():
            return state

        for root, _dirs, names in os.walk(self.directory):
            for name in sorted(names):
                path = Path(root) / name
                try:
                    st = path.lstat()
                except OSError:
                    continue
                if not path.is_file() or path.is_symlink():
                    continue
                state.files.append(
                    LogFileEntry(
                        path=path,
                        mtime=st.st_mtime,
                        size_bytes=st.st_size,
                        is_archive=self.is_archive(path),
                    )
                )
        return state

    def enforce(self) -> TrimResult:
        """
        Evict oldest files until the directory is at or below the cap.

        Stops early when no file can be evicted any more (everything is
        already empty, or an eviction failed), instead of spinning.
        """
        result = TrimResult(directory=self.directory, cap_bytes=self.cap_bytes)

        if self.cap_bytes is None:
            logger.debug("log_trim_disabled", directory=str(self.directory))
            return result

        state = self.scan()
        result.bytes_before = result.bytes_after = state.total_bytes

        while state.total_bytes > self.cap_bytes:
            victim = state.oldest()
            if victim is None:
                result.stopped_early = True
                logger.warning("log_trim_no_candidates", **result.to_dict())
                break

            if not self._evict(victim, result):
                result.stopped_early = True
                break

            state = self.scan()
            result.bytes_after = state.total_bytes

        if result.actions:
            logger.info("log_trim_completed", **result.to_dict())
        return result

    def _evict(self, entry: LogFileEntry, result: TrimResult) -> bool:
        try:
            if entry.is_archive:
                entry.path.unlink()
                result.deleted.append(entry.path)
                logger.info("log_file_deleted", path=str(entry.path), size_bytes=entry.size_bytes)
            else:
                os.truncate(entry.path, 0)
                result.truncated.append(entry.path)
                logger.info("log_file_truncated", path=str(entry.path), size_bytes=entry.size_bytes)
        except FileNotFoundError:
            # Rotated away between scan and eviction; the rescan picks up the new layout
            return True
        except OSError as e:
            logger.warning("log_file_evict_failed", path=str(entry.path), error=str(e))
            return False
        return True
