"""
Backup retention: decide which artifacts stay on local disk.

Two rules, evaluated once per cycle after delivery:
- The cycle's own artifact is deleted as soon as it was uploaded, and kept
  when delivery was skipped or failed.
- Every artifact older than the retention window is deleted regardless of
  its delivery outcome. If remote delivery stays down longer than the
  window, those backups are lost; disk usage stays bounded.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from dumpkeeper.logging import get_logger
from dumpkeeper.models import TIMESTAMP_FORMAT, ArtifactState, DeliveryOutcome

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from dumpkeeper.config import BackupConfig, RetentionPolicy
    from dumpkeeper.models import BackupArtifact, DeliveryResult

logger = get_logger(__name__)


@dataclass
class RetentionResult:
    """Result of a retention operation."""

    files_deleted: int = 0
    bytes_freed: int = 0
    deleted: list[Path] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        """Check if retention completed without errors."""
        return len(self.errors) == 0

    def record(self, path: Path, size_bytes: int) -> None:
        self.files_deleted += 1
        self.bytes_freed += size_bytes
        self.deleted.append(path)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "files_deleted": self.files_deleted,
            "bytes_freed": self.bytes_freed,
            "bytes_freed_mb": round(self.bytes_freed / (1024 * 1024), 2),
            "error_count": len(self.errors),
            "duration_seconds": round(self.duration_seconds, 3),
            "success": self.success,
        }


@dataclass
class AgeCriteria:
    """
    Age-based retention criteria.

    Age is measured from the timestamp embedded in the artifact name; files
    whose name carries no parseable timestamp fall back to their mtime.
    """

    max_age_seconds: float
    prefix: str
    reference_time: datetime = field(default_factory=datetime.now)

    def __post_init__(self) -> None:
        self._pattern = re.compile(rf"^{re.escape(self.prefix)}_backup_(\d{{8}}_\d{{6}})\.")

    def created_at(self, path: Path) -> datetime | None:
        match = self._pattern.match(path.name)
        if match:
            try:
                return datetime.strptime(match.group(1), TIMESTAMP_FORMAT)
            except ValueError:
                pass
        try:
            return datetime.fromtimestamp(path.stat().st_mtime)
        except OSError:
            logger.warning("age_criteria_stat_failed", path=str(path))
            return None

    def get_age_seconds(self, path: Path) -> float:
        created = self.created_at(path)
        if created is None:
            return 0.0
        return (self.reference_time - created).total_seconds()

    def should_delete(self, path: Path) -> bool:
        """Check if file is older than the retention window."""
        return self.get_age_seconds(path) > self.max_age_seconds


class BackupRetentionEnforcer:
    """Applies delivery-based and age-based retention to the backup directory."""

    def __init__(
        self,
        policy: RetentionPolicy,
        backup: BackupConfig,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._policy = policy
        self._backup = backup
        self._clock = clock

    @property
    def artifact_glob(self) -> str:
        return f"{self._backup.prefix}_backup_*.zip"

    def apply(self, artifact: BackupArtifact, delivery: DeliveryResult) -> BackupArtifact:
        """
        Keep or delete this cycle's artifact based on its delivery outcome.

        Returns:
            The artifact with state DELETED (uploaded) or RETAINED.
        """
        if delivery.outcome == DeliveryOutcome.UPLOADED:
            artifact.path.unlink(missing_ok=True)
            artifact.state = ArtifactState.DELETED
            logger.info("artifact_deleted_after_upload", path=str(artifact.path))
        else:
            artifact.state = ArtifactState.RETAINED
            logger.info(
                "artifact_retained",
                path=str(artifact.path),
                delivery=delivery.outcome.value,
            )
        return artifact

    def list_artifacts(self) -> list[Path]:
        directory = self._backup.directory
        if not directory.is_dir():
            return []
        return sorted(p for p in directory.glob(self.artifact_glob) if p.is_file())

    def sweep(self) -> RetentionResult:
        """Delete every artifact older than the retention window."""
        start = time.perf_counter()
        result = RetentionResult()
        criteria = AgeCriteria(
            max_age_seconds=self._policy.max_age_seconds,
            prefix=self._backup.prefix,
            reference_time=self._clock(),
        )

        logger.info(
            "retention_started",
            directory=str(self._backup.directory),
            max_age_minutes=self._policy.max_age_minutes,
        )

        for path in self.list_artifacts():
            if not criteria.should_delete(path):
                continue
            self._delete(path, result)

        result.duration_seconds = time.perf_counter() - start
        logger.info(
            "retention_completed",
            directory=str(self._backup.directory),
            total_backups=len(self.list_artifacts()),
            result=result.to_dict(),
        )
        return result

    def purge_stale(self) -> RetentionResult:
        """
        Remove raw dumps and partial archives left by an interrupted cycle.

        Only runs between cycles, so anything matching is an orphan.
        """
        result = RetentionResult()
        directory = self._backup.directory
        if not directory.is_dir():
            return result

        prefix = f"{self._backup.prefix}_backup_"
        for path in sorted(directory.iterdir()):
            if not path.is_file() or not path.name.startswith(prefix):
                continue
            if path.suffix in (".sql", ".partial"):
                self._delete(path, result)

        if result.files_deleted:
            logger.warning("stale_files_purged", files=[str(p) for p in result.deleted])
        return result

    @staticmethod
    def _delete(path: Path, result: RetentionResult) -> None:
        try:
            size = path.stat().st_size
            path.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            result.errors.append(f"Failed to delete {path}: {e}")
            logger.warning("file_delete_failed", path=str(path), error=str(e))
            return
        result.record(path, size)
        logger.debug("file_deleted", path=str(path), size_bytes=size)
