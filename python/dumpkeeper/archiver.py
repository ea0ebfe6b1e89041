"""
Archiver: raw dump -> password-protected zip.

Encryption is delegated to an external utility (7-Zip or Info-ZIP). The
raw dump is unencrypted database content, so it is removed before
``archive`` returns whatever happens inside it.
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, ClassVar

from dumpkeeper.exceptions import ArchiveError, ConfigurationError
from dumpkeeper.logging import get_logger
from dumpkeeper.models import ArtifactState, BackupArtifact

if TYPE_CHECKING:
    from pathlib import Path

    from dumpkeeper.capabilities import CapabilityProvider
    from dumpkeeper.config import ArchiveConfig
    from dumpkeeper.process import CommandRunner

logger = get_logger(__name__)

ARTIFACT_SUFFIX = ".zip"
PARTIAL_SUFFIX = ".partial"
ARTIFACT_MODE = 0o600


class ArchiveTool(ABC):
    """Strategy for one archiving utility."""

    name: ClassVar[str]

    @abstractmethod
    def build_command(self, source: Path, target: Path, passphrase: str) -> list[str]:
        """Command that writes an encrypted zip of ``source`` to ``target``."""


class SevenZipTool(ArchiveTool):
    """7-Zip writing a zip container with AES-256 entries."""

    name = "7z"

    def build_command(self, source: Path, target: Path, passphrase: str) -> list[str]:
        return [
            "7z",
            "a",
            "-tzip",
            "-mem=AES256",
            f"-p{passphrase}",
            "-y",
            "-bd",
            str(target),
            str(source),
        ]


class InfoZipTool(ArchiveTool):
    """Info-ZIP ``zip`` with its built-in (weaker, ZipCrypto) encryption."""

    name = "zip"

    def build_command(self, source: Path, target: Path, passphrase: str) -> list[str]:
        return ["zip", "-j", "-q", "-9", "--password", passphrase, str(target), str(source)]


ARCHIVE_TOOLS: dict[str, type[ArchiveTool]] = {
    SevenZipTool.name: SevenZipTool,
    InfoZipTool.name: InfoZipTool,
}


class Archiver:
    """Turns a raw dump into one encrypted artifact."""

    def __init__(
        self,
        config: ArchiveConfig,
        runner: CommandRunner,
        capabilities: CapabilityProvider,
        tool: ArchiveTool | None = None,
    ) -> None:
        self._config = config
        self._runner = runner
        self._capabilities = capabilities
        self._tool = tool or ARCHIVE_TOOLS[config.tool]()

    @property
    def tool(self) -> ArchiveTool:
        return self._tool

    def preflight(self) -> str:
        """
        Return the passphrase or fail before anything is written.

        Raises:
            ConfigurationError: No passphrase configured.
        """
        if self._config.passphrase is None:
            raise ConfigurationError.missing_passphrase()
        return self._config.passphrase.get_secret_value()

    @staticmethod
    def artifact_path(raw: BackupArtifact) -> Path:
        return raw.path.with_suffix(ARTIFACT_SUFFIX)

    def archive(self, raw: BackupArtifact) -> BackupArtifact:
        """
        Encrypt ``raw`` into ``<name>.zip``.

        The zip is written to ``<name>.zip.partial`` and renamed into place
        only once the tool succeeded.

        Returns:
            Artifact in state ENCRYPTED with mode 0600.

        Raises:
            ConfigurationError: No passphrase configured.
            DependencyError: The archiving tool is unavailable.
            ArchiveError: The tool failed or its output is missing.
        """
        target = self.artifact_path(raw)
        partial = target.with_name(target.name + PARTIAL_SUFFIX)

        try:
            passphrase = self.preflight()
            self._capabilities.ensure(self._tool.name)

            logger.info("archive_started", tool=self._tool.name, source=str(raw.path))
            result = self._runner.run(
                self._tool.build_command(raw.path, partial, passphrase),
                redact=(passphrase, f"-p{passphrase}"),
            )
            if not result.ok:
                raise ArchiveError.tool_failed(self._tool.name, result.returncode, result.stderr)
            if not partial.exists():
                raise ArchiveError.output_missing(str(partial))

            try:
                os.replace(partial, target)
                os.chmod(target, ARTIFACT_MODE)
            except OSError as e:
                target.unlink(missing_ok=True)
                raise ArchiveError.io_failed(str(target), str(e)) from e
        finally:
            partial.unlink(missing_ok=True)
            raw.path.unlink(missing_ok=True)
            raw.state = ArtifactState.DELETED
            logger.debug("raw_dump_removed", path=str(raw.path))

        artifact = BackupArtifact(timestamp=raw.timestamp, path=target, state=ArtifactState.ENCRYPTED)
        logger.info("archive_completed", path=str(target), size_bytes=artifact.size_bytes)
        return artifact
