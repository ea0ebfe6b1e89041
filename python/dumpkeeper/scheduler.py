"""
Scheduler: drive backup cycles once or forever.

A cycle is: trim logs -> backup pipeline -> trim logs. Cycles never
overlap; the next one starts only after the previous cycle and its sleep
have finished. A failing cycle is logged and the loop carries on.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

from dumpkeeper.logging import get_logger
from dumpkeeper.logtrim import LogTrimmer
from dumpkeeper.models import CycleResult, CycleStatus

if TYPE_CHECKING:
    from dumpkeeper.config import Config
    from dumpkeeper.pipeline import BackupPipeline

logger = get_logger(__name__)


class Scheduler:
    """Runs ``BackupPipeline`` cycles bracketed by log trimming."""

    def __init__(
        self,
        pipeline: BackupPipeline,
        trimmer: LogTrimmer,
        interval_seconds: float,
    ) -> None:
        self.pipeline = pipeline
        self.trimmer = trimmer
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self.cycles_run = 0

    @classmethod
    def from_config(cls, config: Config, pipeline: BackupPipeline) -> Scheduler:
        return cls(pipeline, LogTrimmer.from_config(config), config.schedule.interval_seconds)

    def run_cycle(self) -> CycleResult:
        """Run one trimmed cycle; never raises."""
        self.cycles_run += 1
        self._trim("before_backup")
        try:
            result = self.pipeline.create_backup()
        except Exception as e:
            # Unexpected errors end this cycle, not the loop
            logger.exception("cycle_crashed", error=str(e))
            result = CycleResult(status=CycleStatus.FAILED)
        self._trim("after_backup")
        return result

    def _trim(self, phase: str) -> None:
        """One trim pass; failures are logged, not raised."""
        try:
            self.trimmer.enforce()
        except Exception as e:
            logger.exception("log_trim_crashed", phase=phase, error=str(e))

    def run_once(self) -> int:
        """Single-shot mode. Returns the process exit status."""
        logger.info("single_backup_started")
        return self.run_cycle().exit_code

    def run_forever(self, max_cycles: int | None = None) -> None:
        """
        Continuous mode.

        Args:
            max_cycles: Stop after this many cycles (None runs until ``stop``).
        """
        logger.info(
            "backup_service_started",
            interval_seconds=self.interval_seconds,
            log_dir=str(self.trimmer.directory),
            log_cap_bytes=self.trimmer.cap_bytes,
        )

        while not self._stop.is_set():
            result = self.run_cycle()
            if not result.success:
                logger.warning("cycle_unsuccessful", cycle=self.cycles_run, status=result.status.value)

            if max_cycles is not None and self.cycles_run >= max_cycles:
                break

            logger.info("waiting_for_next_cycle", seconds=self.interval_seconds)
            if self._stop.wait(self.interval_seconds):
                break

        logger.info("backup_service_stopped", cycles=self.cycles_run)

    def stop(self) -> None:
        """Ask ``run_forever`` to return at its next wait."""
        self._stop.set()
