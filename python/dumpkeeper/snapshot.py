"""
Snapshot producer: one consistent logical dump of the database.

The dump runs in single-transaction mode with table locking disabled, so
application writes are not blocked while it is taken, and includes stored
routines and triggers.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from dumpkeeper.exceptions import ProducerError
from dumpkeeper.logging import get_logger
from dumpkeeper.models import ArtifactState, BackupArtifact, artifact_basename

if TYPE_CHECKING:
    from pathlib import Path

    from dumpkeeper.capabilities import CapabilityProvider
    from dumpkeeper.config import BackupConfig, DatabaseConfig
    from dumpkeeper.process import CommandRunner

logger = get_logger(__name__)

RAW_DUMP_SUFFIX = ".sql"


class SnapshotProducer:
    """Runs mysqldump into ``<backup_dir>/<prefix>_backup_<TS>.sql``."""

    def __init__(
        self,
        database: DatabaseConfig,
        backup: BackupConfig,
        runner: CommandRunner,
        capabilities: CapabilityProvider,
    ) -> None:
        self._database = database
        self._backup = backup
        self._runner = runner
        self._capabilities = capabilities

    def build_command(self) -> list[str]:
        """Dump command line; the password travels in MYSQL_PWD, not here."""
        db = self._database
        return [
            db.dump_command,
            "-h",
            db.host,
            "-P",
            str(db.port),
            "-u",
            db.user,
            "--single-transaction",
            "--routines",
            "--triggers",
            "--lock-tables=false",
            db.name,
        ]

    def dump_path(self, timestamp: datetime) -> Path:
        return self._backup.directory / (
            artifact_basename(self._backup.prefix, timestamp) + RAW_DUMP_SUFFIX
        )

    def produce(self, timestamp: datetime) -> BackupArtifact:
        """
        Write one raw dump.

        Args:
            timestamp: Cycle timestamp, used in the file name.

        Returns:
            Artifact in state RAW_DUMP.

        Raises:
            ProducerError: The dump tool failed or the file could not be written.
                No partial dump is left behind.
        """
        self._capabilities.ensure("mysqldump")

        path = self.dump_path(timestamp)
        env: dict[str, str] = {}
        if self._database.password is not None:
            env["MYSQL_PWD"] = self._database.password.get_secret_value()

        logger.info("snapshot_started", database=self._database.name, host=self._database.host)

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            result = self._runner.run(
                self.build_command(),
                stdout_path=path,
                env=env,
                timeout=self._database.dump_timeout_seconds,
            )
        except OSError as e:
            path.unlink(missing_ok=True)
            raise ProducerError.io_failed(str(path), str(e)) from e

        if not result.ok:
            path.unlink(missing_ok=True)
            stderr = result.stderr or ("timed out" if result.timed_out else "")
            raise ProducerError.tool_failed(self._database.name, result.returncode, stderr)

        artifact = BackupArtifact(timestamp=timestamp, path=path, state=ArtifactState.RAW_DUMP)
        logger.info(
            "snapshot_completed",
            path=str(path),
            size_bytes=artifact.size_bytes,
            duration_seconds=round(result.duration_seconds, 3),
        )
        return artifact
