"""Tests for the pipeline data models."""

from datetime import datetime
from pathlib import Path

from dumpkeeper.exceptions import DeliveryError
from dumpkeeper.models import (
    ArtifactState,
    BackupArtifact,
    CycleResult,
    CycleStage,
    CycleStatus,
    DeliveryOutcome,
    DeliveryResult,
    LogDirectoryState,
    LogFileEntry,
    artifact_basename,
)


class TestBackupArtifact:
    def test_label_uses_second_resolution(self):
        artifact = BackupArtifact(datetime(2024, 1, 2, 3, 4, 5), Path("/b/x.sql"))
        assert artifact.label == "20240102_030405"
        assert artifact.state == ArtifactState.RAW_DUMP

    def test_basename(self):
        assert artifact_basename("xenforo", datetime(2024, 1, 2, 3, 4, 5)) == (
            "xenforo_backup_20240102_030405"
        )

    def test_size_of_missing_file_is_zero(self, tmp_path):
        artifact = BackupArtifact(datetime(2024, 1, 2), tmp_path / "gone.zip")
        assert artifact.exists is False
        assert artifact.size_bytes == 0

    def test_to_dict(self, tmp_path):
        path = tmp_path / "a.zip"
        artifact = BackupArtifact(datetime(2024, 1, 2), path, ArtifactState.ENCRYPTED)
        assert artifact.to_dict() == {
            "label": "20240102_000000",
            "path": str(path),
            "state": "encrypted",
        }


class TestDeliveryResult:
    def test_skipped_is_not_an_error(self):
        result = DeliveryResult.skipped("no credentials")
        assert result.outcome == DeliveryOutcome.SKIPPED
        assert result.is_error is False

    def test_uploaded(self):
        result = DeliveryResult.uploaded({"ok": True})
        assert result.is_error is False
        assert result.response_data == {"ok": True}

    def test_failed_reason_prefers_description(self):
        result = DeliveryResult.failed(DeliveryError.rejected("Bad Request: chat not found", 400))
        assert result.is_error is True
        assert result.reason == "Bad Request: chat not found"
        assert result.to_dict()["error_code"] == "DUMPKEEPER_5002"

    def test_failed_reason_falls_back_to_message(self):
        error = DeliveryError.network_failed("https://x/bot***/sendDocument", "refused")
        assert DeliveryResult.failed(error).reason == error.message


class TestLogDirectoryState:
    def _entry(self, name, mtime, size, archive=False):
        return LogFileEntry(Path("/logs") / name, mtime, size, archive)

    def test_total_bytes(self):
        state = LogDirectoryState(
            Path("/logs"), [self._entry("a", 1, 10), self._entry("b", 2, 5)]
        )
        assert state.total_bytes == 15

    def test_oldest_skips_empty_files(self):
        state = LogDirectoryState(
            Path("/logs"),
            [self._entry("old", 1, 0), self._entry("mid", 2, 7), self._entry("new", 3, 9)],
        )
        assert state.oldest().path.name == "mid"

    def test_oldest_tie_broken_by_path(self):
        state = LogDirectoryState(
            Path("/logs"), [self._entry("b.log", 5, 1), self._entry("a.log", 5, 1)]
        )
        assert state.oldest().path.name == "a.log"

    def test_oldest_none_when_all_empty(self):
        state = LogDirectoryState(Path("/logs"), [self._entry("a", 1, 0)])
        assert state.oldest() is None


class TestCycleResult:
    def test_exit_codes(self):
        assert CycleResult(status=CycleStatus.SUCCEEDED).exit_code == 0
        assert CycleResult(status=CycleStatus.FAILED).exit_code == 1

    def test_to_dict(self):
        result = CycleResult(status=CycleStatus.FAILED, failed_stage=CycleStage.ARCHIVE)
        data = result.to_dict()
        assert data["status"] == "failed"
        assert data["failed_stage"] == "archive"
        assert data["artifact"] is None
        assert data["finished_at"] is None
