"""
One backup cycle: Snapshot -> Archive -> Deliver -> Retain.

Stages raise typed ``BackupError`` subclasses; ``create_backup`` turns them
into a tagged ``CycleResult`` so the scheduler never has to catch anything
stage-specific.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING

from dumpkeeper.archiver import Archiver
from dumpkeeper.capabilities import default_registry
from dumpkeeper.delivery import DeliveryAgent
from dumpkeeper.exceptions import BackupError
from dumpkeeper.logging import get_logger, with_context
from dumpkeeper.models import CycleResult, CycleStage, CycleStatus, DeliveryOutcome
from dumpkeeper.process import ProcessRunner
from dumpkeeper.retention import BackupRetentionEnforcer
from dumpkeeper.snapshot import SnapshotProducer

if TYPE_CHECKING:
    from collections.abc import Callable

    import httpx

    from dumpkeeper.capabilities import CapabilityProvider
    from dumpkeeper.config import Config
    from dumpkeeper.process import CommandRunner

logger = get_logger(__name__)


class BackupPipeline:
    """Runs the four backup stages for one cycle."""

    def __init__(
        self,
        producer: SnapshotProducer,
        archiver: Archiver,
        delivery: DeliveryAgent,
        retention: BackupRetentionEnforcer,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.producer = producer
        self.archiver = archiver
        self.delivery = delivery
        self.retention = retention
        self._clock = clock

    @classmethod
    def from_config(
        cls,
        config: Config,
        runner: CommandRunner | None = None,
        capabilities: CapabilityProvider | None = None,
        http_client: httpx.Client | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> BackupPipeline:
        """Wire every stage from one immutable config."""
        runner = runner or ProcessRunner()
        capabilities = capabilities or default_registry(
            runner, dump_command=config.database.dump_command
        )
        return cls(
            producer=SnapshotProducer(config.database, config.backup, runner, capabilities),
            archiver=Archiver(config.archive, runner, capabilities),
            delivery=DeliveryAgent(config.delivery, capabilities, client=http_client),
            retention=BackupRetentionEnforcer(config.retention, config.backup, clock=clock),
            clock=clock,
        )

    def create_backup(self) -> CycleResult:
        """
        Run one cycle.

        Returns:
            CycleResult. SUCCEEDED when every stage completed and delivery
            was not Failed; Skipped delivery still counts as success.
        """
        timestamp = self._clock().replace(microsecond=0)
        result = CycleResult(status=CycleStatus.FAILED)
        # preflight is the archiver's passphrase check
        stage = CycleStage.ARCHIVE

        with with_context(cycle_id=timestamp.strftime("%Y%m%d_%H%M%S")):
            logger.info("backup_started")
            try:
                self.archiver.preflight()
                self.retention.purge_stale()

                stage = CycleStage.SNAPSHOT
                raw = self.producer.produce(timestamp)

                stage = CycleStage.ARCHIVE
                artifact = self.archiver.archive(raw)
                result.artifact = artifact

                stage = CycleStage.DELIVERY
                delivery = self.delivery.deliver(artifact)
                result.delivery = delivery

                stage = CycleStage.RETENTION
                self.retention.apply(artifact, delivery)
                self.retention.sweep()
                result.artifacts_remaining = len(self.retention.list_artifacts())
            except BackupError as e:
                result.error = e
                result.failed_stage = stage
                logger.error("backup_failed", stage=stage.value, **e.to_dict())
            else:
                if delivery.outcome == DeliveryOutcome.FAILED:
                    result.error = delivery.error
                    result.failed_stage = CycleStage.DELIVERY
                    logger.error("backup_delivery_failed", reason=delivery.reason)
                else:
                    result.status = CycleStatus.SUCCEEDED
                    logger.info(
                        "backup_completed",
                        delivery=delivery.outcome.value,
                        artifact=artifact.to_dict(),
                        total_backups=result.artifacts_remaining,
                    )

        result.finished_at = datetime.now(timezone.utc)
        return result
