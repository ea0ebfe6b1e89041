"""Tests for configuration module."""

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError
from structlog.testing import capture_logs

from dumpkeeper.config import (
    ArchiveConfig,
    Config,
    DatabaseConfig,
    DeliveryConfig,
    RetentionPolicy,
    ScheduleConfig,
)
from dumpkeeper.exceptions import ConfigurationError, ErrorCode


class TestDefaults:
    """Defaults match the docker-compose deployment."""

    def test_database_defaults(self):
        config = DatabaseConfig()
        assert config.host == "mysql"
        assert config.user == "root"
        assert config.name == "xenforo"
        assert config.password is None

    def test_schedule_defaults(self):
        config = ScheduleConfig()
        assert config.interval_seconds == 300
        assert config.run_once is False

    def test_retention_defaults(self):
        policy = RetentionPolicy()
        assert policy.max_age_minutes == 30
        assert policy.max_age_seconds == 1800
        assert policy.log_max_bytes == 500 * 1024 * 1024

    def test_archive_passphrase_unset_by_default(self):
        assert ArchiveConfig().passphrase is None


class TestRetentionPolicy:
    @pytest.mark.parametrize("value", ["abc", "0", "-10", "", "1.5"])
    def test_invalid_log_cap_disables_enforcement(self, value):
        policy = RetentionPolicy(log_max_size_mb=value)
        assert policy.log_max_size_mb is None
        assert policy.log_max_bytes is None

    @pytest.mark.parametrize("value", ["", "abc", "0"])
    def test_invalid_log_cap_warns(self, value):
        with capture_logs() as logs:
            RetentionPolicy(log_max_size_mb=value)
        warnings = [e for e in logs if e["event"] == "log_cap_invalid"]
        assert len(warnings) == 1
        assert warnings[0]["log_level"] == "warning"
        assert warnings[0]["value"] == value

    def test_explicit_none_disables_quietly(self):
        with capture_logs() as logs:
            assert RetentionPolicy(log_max_size_mb=None).log_max_bytes is None
        assert logs == []

    def test_valid_log_cap_string(self):
        assert RetentionPolicy(log_max_size_mb="250").log_max_bytes == 250 * 1024 * 1024

    def test_is_frozen(self):
        policy = RetentionPolicy()
        with pytest.raises(ValidationError):
            policy.max_age_minutes = 10


class TestDeliveryConfig:
    def test_disabled_without_credentials(self):
        assert DeliveryConfig().enabled is False

    def test_requires_both_credentials(self):
        assert DeliveryConfig(bot_token="123:abc").enabled is False
        assert DeliveryConfig(chat_id="-100").enabled is False
        assert DeliveryConfig(bot_token="123:abc", chat_id="-100").enabled is True

    def test_blank_values_count_as_unset(self):
        config = DeliveryConfig(bot_token="", chat_id="  ")
        assert config.bot_token is None
        assert config.chat_id is None

    def test_numeric_chat_id_is_string(self):
        assert DeliveryConfig(chat_id=-100123).chat_id == "-100123"


class TestConfigLoad:
    def test_environment_names(self, tmp_path):
        env = {
            "MYSQL_HOST": "db.internal",
            "MYSQL_ROOT_PASSWORD": "rootpw",
            "MYSQL_DATABASE": "forum",
            "BACKUP_RETENTION_MINUTES": "90",
            "BACKUP_INTERVAL": "60",
            "RUN_ONCE": "true",
            "BACKUP_DIR": str(tmp_path),
            "LOG_DIR": str(tmp_path / "logs"),
            "LOG_MAX_SIZE_MB": "100",
            "TELEGRAM_BOT_TOKEN": "123:abc",
            "TELEGRAM_CHAT_ID": "-1001",
            "TELEGRAM_THREAD_ID": "7",
            "BACKUP_PASSWORD": "hunter2",
        }
        config = Config.load(environ=env)

        assert config.database.host == "db.internal"
        assert config.database.password.get_secret_value() == "rootpw"
        assert config.database.name == "forum"
        assert config.retention.max_age_minutes == 90
        assert config.retention.log_max_size_mb == 100
        assert config.schedule.interval_seconds == 60
        assert config.schedule.run_once is True
        assert config.backup.directory == tmp_path
        assert config.log_trim.directory == tmp_path / "logs"
        assert config.delivery.enabled is True
        assert config.delivery.thread_id == "7"
        assert config.archive.passphrase.get_secret_value() == "hunter2"

    def test_invalid_log_cap_from_environment(self):
        config = Config.load(environ={"LOG_MAX_SIZE_MB": "lots"})
        assert config.retention.log_max_bytes is None

    def test_yaml_then_environment(self, tmp_path):
        path = tmp_path / "dumpkeeper.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "database": {"host": "from-file", "name": "filedb"},
                    "schedule": {"interval_seconds": 10},
                }
            )
        )
        config = Config.load(path, environ={"MYSQL_HOST": "from-env"})

        assert config.database.host == "from-env"
        assert config.database.name == "filedb"
        assert config.schedule.interval_seconds == 10

    def test_config_path_from_environment(self, tmp_path):
        path = tmp_path / "c.yaml"
        path.write_text("backup:\n  prefix: shop\n")
        config = Config.load(environ={"DUMPKEEPER_CONFIG": str(path)})
        assert config.backup.prefix == "shop"

    def test_missing_file_uses_defaults(self, tmp_path):
        config = Config.load(tmp_path / "nope.yaml", environ={})
        assert config.database.host == "mysql"

    def test_from_yaml_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError) as exc_info:
            Config.from_yaml(tmp_path / "nope.yaml")
        assert exc_info.value.error_code == ErrorCode.CONFIG_MISSING

    def test_non_mapping_yaml_rejected(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError):
            Config.from_yaml(path)


class TestMaskedOutput:
    def test_secrets_masked(self):
        config = Config.load(
            environ={"BACKUP_PASSWORD": "hunter2", "TELEGRAM_BOT_TOKEN": "123:abc"}
        )
        data = config.masked_dict()
        assert data["archive"]["passphrase"] != "hunter2"
        assert data["delivery"]["bot_token"] != "123:abc"

    def test_to_yaml_round_trip_of_plain_fields(self, tmp_path):
        config = Config.load(environ={"MYSQL_DATABASE": "forum"})
        path = tmp_path / "out" / "config.yaml"
        config.to_yaml(path)

        loaded = yaml.safe_load(path.read_text())
        assert loaded["database"]["name"] == "forum"
        assert Path(loaded["backup"]["directory"]) == Path("/mysql_backups")
