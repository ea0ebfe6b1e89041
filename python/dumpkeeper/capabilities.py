"""
Capability bootstrap: make sure external tools are available.

The backup stages only ask for a capability by name ("7z", "http-client")
through ``CapabilityProvider.ensure``. How a capability is detected and how
it is installed (apt-get, apk, dnf, yum) lives here.

Design Patterns:
- Strategy Pattern: One Capability subclass per kind of dependency
- Chain of Responsibility: Package managers are tried in order
"""

from __future__ import annotations

import importlib.metadata
import shutil
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

from dumpkeeper.exceptions import DependencyError
from dumpkeeper.logging import get_logger

if TYPE_CHECKING:
    from dumpkeeper.process import CommandRunner

logger = get_logger(__name__)

Which = Callable[[str], str | None]


class CapabilityStatus(Enum):
    """
    Status of a capability.

    Attributes:
        AVAILABLE: Present before anything was done.
        INSTALLED: Installed during this process's lifetime.
        MISSING: Not available.
    """

    AVAILABLE = "available"
    INSTALLED = "installed"
    MISSING = "missing"


@dataclass
class CapabilityInfo:
    """Result of checking one capability."""

    name: str
    status: CapabilityStatus = CapabilityStatus.MISSING
    location: str | None = None
    version: str | None = None

    @property
    def usable(self) -> bool:
        return self.status != CapabilityStatus.MISSING

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "location": self.location,
            "version": self.version,
        }


class CapabilityProvider(Protocol):
    """What the backup stages depend on."""

    def ensure(self, name: str) -> None:
        """Make ``name`` usable or raise DependencyError."""
        ...


@dataclass(frozen=True)
class PackageManager:
    """A system package manager and how to install packages with it."""

    name: str
    executable: str
    install_args: tuple[str, ...]
    refresh_args: tuple[str, ...] = ()

    def commands(self, packages: Sequence[str]) -> list[list[str]]:
        """Commands to run, in order, to install ``packages``."""
        commands: list[list[str]] = []
        if self.refresh_args:
            commands.append([self.executable, *self.refresh_args])
        commands.append([self.executable, *self.install_args, *packages])
        return commands


DEFAULT_PACKAGE_MANAGERS: tuple[PackageManager, ...] = (
    PackageManager("apt-get", "apt-get", ("install", "-y", "--no-install-recommends"), ("update",)),
    PackageManager("apk", "apk", ("add", "--no-cache")),
    PackageManager("dnf", "dnf", ("install", "-y")),
    PackageManager("yum", "yum", ("install", "-y")),
)


class Capability(ABC):
    """Abstract base for a named dependency."""

    def __init__(self, name: str) -> None:
        self.name = name

    @abstractmethod
    def check(self) -> CapabilityInfo:
        """Report whether the capability is currently usable."""

    def install(self, installer: SystemInstaller) -> list[str]:
        """
        Try to install the capability.

        Returns:
            Names of the package managers that were attempted.
        """
        return []


class ExecutableCapability(Capability):
    """An executable on PATH, installable from system packages."""

    def __init__(
        self,
        name: str,
        executable: str,
        packages: dict[str, list[str]] | None = None,
        which: Which = shutil.which,
    ) -> None:
        super().__init__(name)
        self.executable = executable
        self.packages = packages or {}
        self._which = which

    def check(self) -> CapabilityInfo:
        location = self._which(self.executable)
        if location:
            return CapabilityInfo(self.name, CapabilityStatus.AVAILABLE, location=location)
        return CapabilityInfo(self.name, CapabilityStatus.MISSING)

    def install(self, installer: SystemInstaller) -> list[str]:
        return installer.install(self.name, self.packages, lambda: self.check().usable)


class PythonPackageCapability(Capability):
    """A Python distribution that must be importable."""

    def __init__(self, name: str, distribution: str) -> None:
        super().__init__(name)
        self.distribution = distribution

    def check(self) -> CapabilityInfo:
        try:
            dist = importlib.metadata.distribution(self.distribution)
        except importlib.metadata.PackageNotFoundError:
            return CapabilityInfo(self.name, CapabilityStatus.MISSING)
        return CapabilityInfo(
            self.name,
            CapabilityStatus.AVAILABLE,
            location=self.distribution,
            version=dist.version,
        )


@dataclass
class SystemInstaller:
    """Installs system packages with the first package manager that works."""

    runner: CommandRunner
    managers: Sequence[PackageManager] = DEFAULT_PACKAGE_MANAGERS
    which: Which = shutil.which

    def install(
        self,
        capability: str,
        packages: dict[str, list[str]],
        verify: Callable[[], bool],
    ) -> list[str]:
        """
        Walk the package managers until ``verify`` passes.

        Args:
            capability: Capability name, for logging.
            packages: Package names per package manager name.
            verify: Re-check run after each install attempt.

        Returns:
            Names of the package managers that were attempted.
        """
        attempted: list[str] = []
        for manager in self.managers:
            names = packages.get(manager.name)
            if not names or not self.which(manager.executable):
                continue

            attempted.append(manager.name)
            logger.info("capability_install_started", capability=capability, manager=manager.name)

            for command in manager.commands(names):
                result = self.runner.run(command)
                if not result.ok:
                    logger.warning(
                        "capability_install_failed",
                        capability=capability,
                        manager=manager.name,
                        returncode=result.returncode,
                        stderr=result.stderr[-300:],
                    )
                    break
            else:
                if verify():
                    logger.info("capability_installed", capability=capability, manager=manager.name)
                    return attempted

        return attempted


class CapabilityRegistry:
    """
    Registry of capabilities; implements ``CapabilityProvider``.

    A capability that was ensured once is not checked again.
    """

    def __init__(self, installer: SystemInstaller | None = None) -> None:
        self._installer = installer
        self._capabilities: dict[str, Capability] = {}
        self._ensured: dict[str, CapabilityInfo] = {}

    def register(self, capability: Capability) -> None:
        self._capabilities[capability.name] = capability

    def names(self) -> list[str]:
        return sorted(self._capabilities)

    def ensure(self, name: str) -> None:
        """
        Make a capability usable, installing it if needed.

        Raises:
            DependencyError: Unknown name, or still missing after all attempts.
        """
        if name in self._ensured:
            return

        capability = self._capabilities.get(name)
        if capability is None:
            raise DependencyError.unknown(name)

        info = capability.check()
        if info.usable:
            self._ensured[name] = info
            return

        attempted: list[str] = []
        if self._installer is not None:
            attempted = capability.install(self._installer)
            info = capability.check()
            if info.usable:
                info.status = CapabilityStatus.INSTALLED
                self._ensured[name] = info
                return

        logger.error("capability_missing", capability=name, attempted=attempted)
        raise DependencyError.missing(name, attempted)

    def check_all(self) -> list[CapabilityInfo]:
        """Check every registered capability without installing anything."""
        results = [self._capabilities[name].check() for name in self.names()]
        logger.info(
            "capabilities_checked",
            available=sum(1 for r in results if r.usable),
            missing=sum(1 for r in results if not r.usable),
        )
        return results


MYSQLDUMP_PACKAGES = {
    "apt-get": ["default-mysql-client"],
    "apk": ["mysql-client"],
    "dnf": ["mysql"],
    "yum": ["mysql"],
}

SEVEN_ZIP_PACKAGES = {
    "apt-get": ["p7zip-full"],
    "apk": ["7zip"],
    "dnf": ["p7zip", "p7zip-plugins"],
    "yum": ["p7zip", "p7zip-plugins"],
}

ZIP_PACKAGES = {manager.name: ["zip"] for manager in DEFAULT_PACKAGE_MANAGERS}

MARIADB_DUMP_PACKAGES = {
    "apt-get": ["mariadb-client"],
    "apk": ["mariadb-client"],
    "dnf": ["mariadb"],
    "yum": ["mariadb"],
}

# Packages known to provide a dump executable, by executable name
DUMP_PACKAGES = {
    "mysqldump": MYSQLDUMP_PACKAGES,
    "mariadb-dump": MARIADB_DUMP_PACKAGES,
}


def default_registry(
    runner: CommandRunner,
    which: Which = shutil.which,
    dump_command: str = "mysqldump",
) -> CapabilityRegistry:
    """
    Registry with every capability the backup pipeline can ask for.

    The "mysqldump" capability looks for ``dump_command``, which may be
    another executable name or an absolute path. Only the bare names in
    ``DUMP_PACKAGES`` are installed when missing.
    """
    registry = CapabilityRegistry(SystemInstaller(runner=runner, which=which))
    dump_packages = DUMP_PACKAGES.get(dump_command, {})
    registry.register(ExecutableCapability("mysqldump", dump_command, dump_packages, which))
    registry.register(ExecutableCapability("7z", "7z", SEVEN_ZIP_PACKAGES, which))
    registry.register(ExecutableCapability("zip", "zip", ZIP_PACKAGES, which))
    registry.register(PythonPackageCapability("http-client", "httpx"))
    return registry
