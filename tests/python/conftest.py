"""Pytest configuration and shared fakes for dumpkeeper tests."""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

import pytest
import structlog

from dumpkeeper.config import (
    ArchiveConfig,
    BackupConfig,
    Config,
    DeliveryConfig,
    LogTrimConfig,
    RetentionPolicy,
)
from dumpkeeper.exceptions import DependencyError
from dumpkeeper.process import ProcessResult

FIXED_NOW = datetime(2024, 1, 2, 3, 4, 5)


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")


@pytest.fixture(autouse=True)
def _reset_structlog() -> Iterator[None]:
    """Undo any setup_logging() a test performed."""
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


@dataclass
class FakeCall:
    args: list[str]
    stdout_path: Path | None
    env: dict[str, str]
    timeout: float | None
    redact: tuple[str, ...]


@dataclass
class FakeRunner:
    """
    Stand-in for ProcessRunner.

    Simulates mysqldump (writes SQL to the stdout file) and 7z/zip (writes
    the target archive, which both tools take as the second-to-last arg).
    """

    dump_returncode: int = 0
    archive_returncode: int = 0
    write_archive: bool = True
    returncodes: dict[str, int] = field(default_factory=dict)
    calls: list[FakeCall] = field(default_factory=list)

    def run(
        self,
        args: Sequence[str],
        *,
        stdout_path: Path | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
        redact: Sequence[str] = (),
    ) -> ProcessResult:
        args = [str(a) for a in args]
        self.calls.append(FakeCall(args, stdout_path, dict(env or {}), timeout, tuple(redact)))
        tool = Path(args[0]).name

        if tool == "mysqldump":
            if stdout_path is not None:
                stdout_path.write_text("-- MySQL dump\nCREATE TABLE posts (id INT);\n")
            stderr = "" if self.dump_returncode == 0 else "mysqldump: Got error: 1045: Access denied"
            return ProcessResult(args, self.dump_returncode, stderr=stderr)

        if tool in ("7z", "zip"):
            if self.archive_returncode == 0 and self.write_archive:
                Path(args[-2]).write_bytes(b"PK\x03\x04encrypted")
            elif self.archive_returncode != 0:
                # Real archivers can leave a half-written file behind
                Path(args[-2]).write_bytes(b"PK")
            stderr = "" if self.archive_returncode == 0 else "ERROR: disk full"
            return ProcessResult(args, self.archive_returncode, stderr=stderr)

        return ProcessResult(args, self.returncodes.get(tool, 0))

    def commands(self) -> list[str]:
        return [Path(c.args[0]).name for c in self.calls]


@dataclass
class StubCapabilities:
    """CapabilityProvider that records requests and fails for ``missing`` names."""

    missing: set[str] = field(default_factory=set)
    ensured: list[str] = field(default_factory=list)

    def ensure(self, name: str) -> None:
        self.ensured.append(name)
        if name in self.missing:
            raise DependencyError.missing(name, ["apt-get"])


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def capabilities() -> StubCapabilities:
    return StubCapabilities()


@pytest.fixture
def backup_dir(tmp_path: Path) -> Path:
    return tmp_path / "backups"


@pytest.fixture
def log_dir(tmp_path: Path) -> Path:
    path = tmp_path / "logs"
    path.mkdir()
    return path


@pytest.fixture
def make_config(backup_dir: Path, log_dir: Path) -> Any:
    """Factory for a Config pointing at temporary directories."""

    def _make(
        passphrase: str | None = "s3cret",
        bot_token: str | None = None,
        chat_id: str | None = None,
        thread_id: str | None = None,
        max_age_minutes: float = 30,
        log_max_size_mb: int | None = 500,
    ) -> Config:
        return Config(
            backup=BackupConfig(directory=backup_dir, prefix="xenforo"),
            archive=ArchiveConfig(passphrase=passphrase),
            delivery=DeliveryConfig(
                bot_token=bot_token,
                chat_id=chat_id,
                thread_id=thread_id,
                api_base="https://api.telegram.test",
            ),
            retention=RetentionPolicy(
                max_age_minutes=max_age_minutes,
                log_max_size_mb=log_max_size_mb,
            ),
            log_trim=LogTrimConfig(directory=log_dir),
        )

    return _make
