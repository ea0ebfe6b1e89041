"""
Custom exception hierarchy for dumpkeeper.

One exception class per backup stage:
- BackupError: Base exception for all dumpkeeper errors
- ConfigurationError: Missing or invalid configuration (e.g. no passphrase)
- DependencyError: A required external tool or package is unavailable
- ProducerError: The database dump tool failed
- ArchiveError: Compression/encryption of the dump failed
- DeliveryError: Remote delivery failed at the network or API level

Each exception includes:
- error_code: Machine-readable error identifier
- context: Additional structured data for debugging
- is_retryable: Whether the next cycle can be expected to succeed
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Machine-readable error codes for categorization and monitoring."""

    # Configuration errors (1xxx)
    CONFIG_INVALID = "DUMPKEEPER_1001"
    CONFIG_MISSING = "DUMPKEEPER_1002"
    CONFIG_VALIDATION = "DUMPKEEPER_1003"
    CONFIG_PASSPHRASE_MISSING = "DUMPKEEPER_1004"

    # Dependency errors (2xxx)
    DEPENDENCY_MISSING = "DUMPKEEPER_2001"
    DEPENDENCY_UNKNOWN = "DUMPKEEPER_2002"

    # Snapshot errors (3xxx)
    PRODUCER_TOOL_FAILED = "DUMPKEEPER_3001"
    PRODUCER_IO_FAILED = "DUMPKEEPER_3002"

    # Archive errors (4xxx)
    ARCHIVE_TOOL_FAILED = "DUMPKEEPER_4001"
    ARCHIVE_OUTPUT_MISSING = "DUMPKEEPER_4002"
    ARCHIVE_IO_FAILED = "DUMPKEEPER_4003"

    # Delivery errors (5xxx)
    DELIVERY_NETWORK_FAILED = "DUMPKEEPER_5001"
    DELIVERY_REJECTED = "DUMPKEEPER_5002"
    DELIVERY_TIMEOUT = "DUMPKEEPER_5003"

    # General errors (9xxx)
    UNKNOWN = "DUMPKEEPER_9999"


@dataclass
class BackupError(Exception):
    """
    Base exception for all dumpkeeper errors.

    Provides structured error information for logging and monitoring.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable error identifier
        context: Additional structured data for debugging
        is_retryable: Whether the next cycle may succeed without intervention
        cause: Original exception that caused this error
    """

    message: str
    error_code: ErrorCode = ErrorCode.UNKNOWN
    context: dict[str, Any] = field(default_factory=dict)
    is_retryable: bool = False
    cause: Exception | None = None

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def __str__(self) -> str:
        parts = [f"[{self.error_code.value}] {self.message}"]
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            parts.append(f" ({context_str})")
        return "".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"context={self.context!r}, "
            f"is_retryable={self.is_retryable})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code.value,
            "message": self.message,
            "context": self.context,
            "is_retryable": self.is_retryable,
            "cause": str(self.cause) if self.cause else None,
        }


@dataclass
class ConfigurationError(BackupError):
    """Raised when configuration is invalid or missing."""

    error_code: ErrorCode = ErrorCode.CONFIG_INVALID

    @classmethod
    def missing_file(cls, path: str) -> ConfigurationError:
        """Create error for missing configuration file."""
        return cls(
            message=f"Configuration file not found: {path}",
            error_code=ErrorCode.CONFIG_MISSING,
            context={"path": path},
        )

    @classmethod
    def validation_failed(cls, field: str, value: Any, reason: str) -> ConfigurationError:
        """Create error for validation failure."""
        return cls(
            message=f"Configuration validation failed for '{field}': {reason}",
            error_code=ErrorCode.CONFIG_VALIDATION,
            context={"field": field, "value": str(value), "reason": reason},
        )

    @classmethod
    def missing_passphrase(cls) -> ConfigurationError:
        """Create error for an unset archive passphrase."""
        return cls(
            message="Archive passphrase is not configured; refusing to write an unencrypted backup",
            error_code=ErrorCode.CONFIG_PASSPHRASE_MISSING,
            context={"setting": "BACKUP_PASSWORD"},
        )


@dataclass
class DependencyError(BackupError):
    """Raised when a required tool or package cannot be made available."""

    error_code: ErrorCode = ErrorCode.DEPENDENCY_MISSING

    @classmethod
    def missing(cls, capability: str, attempted: list[str] | None = None) -> DependencyError:
        """Create error for a capability still missing after install attempts."""
        return cls(
            message=f"Required capability '{capability}' is unavailable",
            error_code=ErrorCode.DEPENDENCY_MISSING,
            context={"capability": capability, "attempted": attempted or []},
        )

    @classmethod
    def unknown(cls, capability: str) -> DependencyError:
        """Create error for a capability name nobody registered."""
        return cls(
            message=f"Unknown capability '{capability}'",
            error_code=ErrorCode.DEPENDENCY_UNKNOWN,
            context={"capability": capability},
        )


@dataclass
class ProducerError(BackupError):
    """Raised when the database dump cannot be produced."""

    error_code: ErrorCode = ErrorCode.PRODUCER_TOOL_FAILED
    is_retryable: bool = True

    @classmethod
    def tool_failed(cls, database: str, returncode: int, stderr: str) -> ProducerError:
        """Create error for a non-zero dump tool exit."""
        return cls(
            message=f"Dump of database '{database}' failed with exit code {returncode}",
            error_code=ErrorCode.PRODUCER_TOOL_FAILED,
            context={"database": database, "returncode": returncode, "stderr": stderr[-500:]},
        )

    @classmethod
    def io_failed(cls, path: str, reason: str) -> ProducerError:
        """Create error for an I/O failure while writing the dump."""
        return cls(
            message=f"Could not write dump file: {reason}",
            error_code=ErrorCode.PRODUCER_IO_FAILED,
            context={"path": path, "reason": reason},
        )


@dataclass
class ArchiveError(BackupError):
    """Raised when the dump cannot be turned into an encrypted archive."""

    error_code: ErrorCode = ErrorCode.ARCHIVE_TOOL_FAILED
    is_retryable: bool = True

    @classmethod
    def tool_failed(cls, tool: str, returncode: int, stderr: str) -> ArchiveError:
        """Create error for a non-zero archiver exit."""
        return cls(
            message=f"Archiver '{tool}' failed with exit code {returncode}",
            error_code=ErrorCode.ARCHIVE_TOOL_FAILED,
            context={"tool": tool, "returncode": returncode, "stderr": stderr[-500:]},
        )

    @classmethod
    def output_missing(cls, path: str) -> ArchiveError:
        """Create error for an archiver that reported success but wrote nothing."""
        return cls(
            message=f"Archiver produced no output at {path}",
            error_code=ErrorCode.ARCHIVE_OUTPUT_MISSING,
            context={"path": path},
        )

    @classmethod
    def io_failed(cls, path: str, reason: str) -> ArchiveError:
        """Create error for a filesystem failure around the archive."""
        return cls(
            message=f"Archive I/O failed: {reason}",
            error_code=ErrorCode.ARCHIVE_IO_FAILED,
            context={"path": path, "reason": reason},
        )


@dataclass
class DeliveryError(BackupError):
    """Raised (or attached to a failed result) when remote delivery fails."""

    error_code: ErrorCode = ErrorCode.DELIVERY_NETWORK_FAILED
    is_retryable: bool = True

    @classmethod
    def network_failed(cls, endpoint: str, reason: str) -> DeliveryError:
        """Create error for a transport-level failure."""
        return cls(
            message=f"Could not reach delivery endpoint: {reason}",
            error_code=ErrorCode.DELIVERY_NETWORK_FAILED,
            context={"endpoint": endpoint, "reason": reason},
        )

    @classmethod
    def timeout(cls, endpoint: str, timeout_seconds: float) -> DeliveryError:
        """Create error for a delivery that exceeded its timeout."""
        return cls(
            message=f"Delivery timed out after {timeout_seconds}s",
            error_code=ErrorCode.DELIVERY_TIMEOUT,
            context={"endpoint": endpoint, "timeout_seconds": timeout_seconds},
        )

    @classmethod
    def rejected(cls, description: str | None, status_code: int | None = None) -> DeliveryError:
        """Create error for an API-level rejection."""
        return cls(
            message=f"Delivery rejected: {description or 'unknown error'}",
            error_code=ErrorCode.DELIVERY_REJECTED,
            context={"description": description, "status_code": status_code},
        )
