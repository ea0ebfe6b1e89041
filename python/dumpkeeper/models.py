"""
Data models shared by the backup pipeline stages.

These are plain dataclasses: a BackupArtifact travels through the cycle and
has its state advanced by each stage, results are returned as tagged values
the scheduler can inspect.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from dumpkeeper.exceptions import BackupError, DeliveryError

TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"


class ArtifactState(str, Enum):
    """Lifecycle of one cycle's output."""

    RAW_DUMP = "raw_dump"
    ENCRYPTED = "encrypted"
    DELIVERY_ATTEMPTED = "delivery_attempted"
    RETAINED = "retained"
    DELETED = "deleted"


@dataclass
class BackupArtifact:
    """
    One cycle's output file.

    Attributes:
        timestamp: Creation time, second resolution, local time.
        path: Current location on disk.
        state: Where the artifact is in its lifecycle.
    """

    timestamp: datetime
    path: Path
    state: ArtifactState = ArtifactState.RAW_DUMP

    @property
    def label(self) -> str:
        """Timestamp as used in file names and captions."""
        return self.timestamp.strftime(TIMESTAMP_FORMAT)

    @property
    def exists(self) -> bool:
        return self.path.exists()

    @property
    def size_bytes(self) -> int:
        try:
            return self.path.stat().st_size
        except OSError:
            return 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "label": self.label,
            "path": str(self.path),
            "state": self.state.value,
        }


def artifact_basename(prefix: str, timestamp: datetime) -> str:
    """``<prefix>_backup_<YYYYMMDD_HHMMSS>`` without extension."""
    return f"{prefix}_backup_{timestamp.strftime(TIMESTAMP_FORMAT)}"


class DeliveryOutcome(str, Enum):
    """Result tag of a delivery attempt."""

    UPLOADED = "uploaded"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class DeliveryResult:
    """
    Result of a delivery attempt.

    Attributes:
        outcome: Uploaded, Skipped or Failed.
        reason: Human-readable explanation for Skipped/Failed.
        error: The structured error behind a Failed outcome.
        response_data: Parsed response body, when there was one.
        attempted_at: When the attempt was made.
    """

    outcome: DeliveryOutcome
    reason: str | None = None
    error: DeliveryError | None = None
    response_data: dict[str, Any] = field(default_factory=dict)
    attempted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_error(self) -> bool:
        """Skipped is an expected outcome, only Failed counts as an error."""
        return self.outcome == DeliveryOutcome.FAILED

    @classmethod
    def uploaded(cls, response_data: dict[str, Any] | None = None) -> DeliveryResult:
        return cls(outcome=DeliveryOutcome.UPLOADED, response_data=response_data or {})

    @classmethod
    def skipped(cls, reason: str) -> DeliveryResult:
        return cls(outcome=DeliveryOutcome.SKIPPED, reason=reason)

    @classmethod
    def failed(
        cls,
        error: DeliveryError,
        response_data: dict[str, Any] | None = None,
    ) -> DeliveryResult:
        return cls(
            outcome=DeliveryOutcome.FAILED,
            reason=error.context.get("description") or error.message,
            error=error,
            response_data=response_data or {},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "reason": self.reason,
            "error_code": self.error.error_code.value if self.error else None,
            "attempted_at": self.attempted_at.isoformat(),
        }


@dataclass(frozen=True)
class LogFileEntry:
    """One regular file under the trimmed log directory."""

    path: Path
    mtime: float
    size_bytes: int
    is_archive: bool


@dataclass
class LogDirectoryState:
    """Aggregate view of the log directory, recomputed every pass."""

    directory: Path
    files: list[LogFileEntry] = field(default_factory=list)

    @property
    def total_bytes(self) -> int:
        return sum(f.size_bytes for f in self.files)

    def oldest(self) -> LogFileEntry | None:
        """
        Globally oldest file that still occupies space.

        Empty files are skipped: truncating them again frees nothing.
        Ties on mtime are broken by path so repeated passes agree.
        """
        candidates = [f for f in self.files if f.size_bytes > 0]
        if not candidates:
            return None
        return min(candidates, key=lambda f: (f.mtime, str(f.path)))


class CycleStatus(str, Enum):
    """Outcome of one backup cycle."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"


class CycleStage(str, Enum):
    """Pipeline stages, used to report where a cycle failed."""

    SNAPSHOT = "snapshot"
    ARCHIVE = "archive"
    DELIVERY = "delivery"
    RETENTION = "retention"


@dataclass
class CycleResult:
    """Tagged result of ``BackupPipeline.create_backup``."""

    status: CycleStatus
    artifact: BackupArtifact | None = None
    delivery: DeliveryResult | None = None
    error: BackupError | None = None
    failed_stage: CycleStage | None = None
    artifacts_remaining: int = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None

    @property
    def success(self) -> bool:
        return self.status == CycleStatus.SUCCEEDED

    @property
    def exit_code(self) -> int:
        """Process exit status for one-shot mode."""
        return 0 if self.success else 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "artifact": self.artifact.to_dict() if self.artifact else None,
            "delivery": self.delivery.to_dict() if self.delivery else None,
            "error": self.error.to_dict() if self.error else None,
            "failed_stage": self.failed_stage.value if self.failed_stage else None,
            "artifacts_remaining": self.artifacts_remaining,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }
