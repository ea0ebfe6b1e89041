"""
Configuration management for dumpkeeper.

The configuration is built once at startup and passed explicitly into every
component; nothing below reads the process environment on its own.

Sources, lowest precedence first:
1. Defaults
2. YAML config file
3. The container environment variables (MYSQL_HOST, BACKUP_PASSWORD, ...)
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from dumpkeeper.exceptions import ConfigurationError
from dumpkeeper.logging import get_logger

logger = get_logger(__name__)

MEBIBYTE = 1024 * 1024

# Flat environment names used by the container definitions -> dotted config path
ENV_ALIASES: dict[str, str] = {
    "MYSQL_HOST": "database.host",
    "MYSQL_PORT": "database.port",
    "MYSQL_USER": "database.user",
    "MYSQL_ROOT_PASSWORD": "database.password",
    "MYSQL_DATABASE": "database.name",
    "BACKUP_DIR": "backup.directory",
    "BACKUP_PREFIX": "backup.prefix",
    "BACKUP_RETENTION_MINUTES": "retention.max_age_minutes",
    "LOG_MAX_SIZE_MB": "retention.log_max_size_mb",
    "BACKUP_INTERVAL": "schedule.interval_seconds",
    "RUN_ONCE": "schedule.run_once",
    "LOG_DIR": "log_trim.directory",
    "TELEGRAM_BOT_TOKEN": "delivery.bot_token",
    "TELEGRAM_CHAT_ID": "delivery.chat_id",
    "TELEGRAM_THREAD_ID": "delivery.thread_id",
    "TELEGRAM_CAPTION_PREFIX": "delivery.caption_prefix",
    "BACKUP_PASSWORD": "archive.passphrase",
    "ARCHIVE_TOOL": "archive.tool",
    "LOG_LEVEL": "logging.level",
}


class _Section(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class DatabaseConfig(_Section):
    """Connection parameters for the dump target."""

    host: str = Field(default="mysql", description="Database host")
    port: int = Field(default=3306, description="Database port")
    user: str = Field(default="root", description="Database user")
    password: SecretStr | None = Field(default=None, description="Database password")
    name: str = Field(default="xenforo", description="Database to dump")
    dump_command: str = Field(default="mysqldump", description="Dump executable")
    dump_timeout_seconds: float | None = Field(
        default=None, description="Abort the dump after this many seconds (None waits forever)"
    )


class BackupConfig(_Section):
    """Where artifacts are written and how they are named."""

    directory: Path = Field(default=Path("/mysql_backups"), description="Backup directory")
    prefix: str = Field(default="xenforo", description="Artifact file name prefix")


class RetentionPolicy(_Section):
    """Both storage budgets: artifact age and log directory size."""

    max_age_minutes: float = Field(
        default=30, ge=0, description="Maximum local artifact age before forced eviction"
    )
    log_max_size_mb: int | None = Field(
        default=500, description="Byte cap for the log directory in MB (None disables)"
    )

    @field_validator("log_max_size_mb", mode="before")
    @classmethod
    def _positive_or_disabled(cls, value: Any) -> int | None:
        """Invalid caps, including an empty value, disable log enforcement."""
        if value is None:
            return None
        try:
            parsed = int(str(value).strip())
        except ValueError:
            parsed = 0
        if parsed <= 0:
            logger.warning("log_cap_invalid", value=str(value), action="log trimming disabled")
            return None
        return parsed

    @property
    def log_max_bytes(self) -> int | None:
        """Log directory cap in bytes."""
        if self.log_max_size_mb is None:
            return None
        return self.log_max_size_mb * MEBIBYTE

    @property
    def max_age_seconds(self) -> float:
        """Retention window in seconds."""
        return self.max_age_minutes * 60


class ScheduleConfig(_Section):
    """One-shot vs continuous mode."""

    interval_seconds: float = Field(default=300, ge=0, description="Sleep between cycles")
    run_once: bool = Field(default=False, description="Run a single cycle and exit")


class LogTrimConfig(_Section):
    """The unrelated log directory that shares disk with the backups."""

    directory: Path = Field(default=Path("/var/log/nginx"), description="Log directory root")
    archive_extensions: tuple[str, ...] = Field(
        default=(".gz", ".bz2", ".xz", ".zip", ".zst", ".lz4", ".7z", ".tgz", ".tar"),
        description="Extensions of rotated files that are deleted instead of truncated",
    )


class DeliveryConfig(_Section):
    """Remote delivery through the Telegram Bot API."""

    bot_token: SecretStr | None = Field(default=None, description="Bot token")
    chat_id: str | None = Field(default=None, description="Target chat id")
    thread_id: str | None = Field(default=None, description="Optional forum topic id")
    caption_prefix: str = Field(default="Database backup", description="Caption prefix")
    api_base: str = Field(default="https://api.telegram.org", description="Bot API base URL")
    timeout_seconds: float = Field(default=300.0, gt=0, description="Upload timeout")

    @field_validator("chat_id", "thread_id", mode="before")
    @classmethod
    def _blank_is_unset(cls, value: Any) -> str | None:
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    @field_validator("bot_token", mode="before")
    @classmethod
    def _blank_token_is_unset(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def enabled(self) -> bool:
        """Both credentials are required together."""
        return self.bot_token is not None and self.chat_id is not None


class ArchiveConfig(_Section):
    """Encrypted archive settings."""

    passphrase: SecretStr | None = Field(default=None, description="Archive passphrase")
    tool: Literal["7z", "zip"] = Field(default="7z", description="Archiving utility")

    @field_validator("passphrase", mode="before")
    @classmethod
    def _blank_passphrase_is_unset(cls, value: Any) -> Any:
        if isinstance(value, str) and not value:
            return None
        return value


class LoggingConfig(_Section):
    """Configuration for logging."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="plain", description="Log format (json, plain)")
    file: str | None = Field(default=None, description="JSONL log file path (None for stdout only)")


class Config(BaseSettings):
    """Main configuration for dumpkeeper."""

    model_config = SettingsConfigDict(
        env_prefix="DUMPKEEPER_",
        env_nested_delimiter="__",
        extra="ignore",
        frozen=True,
    )

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    backup: BackupConfig = Field(default_factory=BackupConfig)
    retention: RetentionPolicy = Field(default_factory=RetentionPolicy)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    log_trim: LogTrimConfig = Field(default_factory=LogTrimConfig)
    delivery: DeliveryConfig = Field(default_factory=DeliveryConfig)
    archive: ArchiveConfig = Field(default_factory=ArchiveConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> Config:
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise ConfigurationError.missing_file(str(path))
        return cls(**_read_yaml(path))

    @classmethod
    def load(
        cls,
        config_path: str | Path | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> Config:
        """
        Load configuration with precedence:
        1. Container environment variables (highest)
        2. Config file (explicit path or DUMPKEEPER_CONFIG)
        3. Defaults (lowest)
        """
        environ = os.environ if environ is None else environ

        if config_path is None:
            config_path = environ.get("DUMPKEEPER_CONFIG")

        data: dict[str, Any] = {}
        if config_path is not None:
            path = Path(config_path)
            if not path.exists():
                logger.warning("config_file_missing", path=str(path))
            else:
                data = _read_yaml(path)

        for name, dotted in ENV_ALIASES.items():
            if name in environ:
                _set_dotted(data, dotted, environ[name])

        return cls(**data)

    def masked_dict(self) -> dict[str, Any]:
        """Dump to plain data with secrets masked."""
        return self.model_dump(mode="json")

    def to_yaml(self, path: str | Path) -> None:
        """Save configuration to a YAML file (secrets are masked)."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with path.open("w") as f:
            yaml.safe_dump(self.masked_dict(), f, default_flow_style=False)


def _read_yaml(path: Path) -> dict[str, Any]:
    with path.open() as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping")
    return data


def _set_dotted(data: dict[str, Any], dotted: str, value: Any) -> None:
    section, _, key = dotted.partition(".")
    target = data.setdefault(section, {})
    target[key] = value
