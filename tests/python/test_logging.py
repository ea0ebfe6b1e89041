"""Tests for logging module."""

import json

from dumpkeeper.config import LoggingConfig
from dumpkeeper.logging import bind_context, clear_context, get_logger, setup_logging, with_context


class TestSetupLogging:
    """Test logging setup."""

    def test_setup_logging_default(self):
        setup_logging()
        assert get_logger("test") is not None

    def test_setup_logging_from_config(self):
        setup_logging(LoggingConfig(level="DEBUG", format="json"))
        assert get_logger("test_config") is not None

    def test_plain_output_has_timestamp(self, capsys):
        setup_logging(level="INFO", format="plain")
        get_logger("test_plain").info("cycle_started", cycle_id="20240102_030405")

        out = capsys.readouterr().out
        assert "cycle_started" in out
        assert "20240102_030405" in out
        # "%Y-%m-%d %H:%M:%S"
        assert out[4] == "-" and out[13] == ":"

    def test_json_output(self, capsys):
        setup_logging(level="INFO", format="json")
        get_logger("test_json").warning("log_cap_invalid", value="abc")

        line = capsys.readouterr().out.strip().splitlines()[-1]
        data = json.loads(line)
        assert data["event"] == "log_cap_invalid"
        assert data["value"] == "abc"
        assert data["level"] == "warning"
        assert "timestamp" in data

    def test_level_filters(self, capsys):
        setup_logging(level="ERROR", format="plain")
        get_logger("test_level").info("should_not_appear")
        assert "should_not_appear" not in capsys.readouterr().out

    def test_jsonl_file(self, tmp_path):
        log_file = tmp_path / "logs" / "dumpkeeper.jsonl"
        setup_logging(level="INFO", log_file=str(log_file), enable_console=False)
        get_logger("test_file").info("backup_completed", total_backups=3)

        lines = log_file.read_text().strip().splitlines()
        data = json.loads(lines[-1])
        assert data["event"] == "backup_completed"
        assert data["service"] == "dumpkeeper"
        assert data["total_backups"] == 3


class TestContext:
    def test_bound_context_is_rendered(self, capsys):
        setup_logging(level="INFO", format="json")
        bind_context(cycle_id="abc")
        get_logger("test_ctx").info("stage_done")
        clear_context()

        data = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert data["cycle_id"] == "abc"

    def test_with_context_is_temporary(self, capsys):
        setup_logging(level="INFO", format="json")
        logger = get_logger("test_with_ctx")
        with with_context(cycle_id="inner"):
            logger.info("inside")
        logger.info("outside")

        lines = capsys.readouterr().out.strip().splitlines()
        assert json.loads(lines[-2])["cycle_id"] == "inner"
        assert "cycle_id" not in json.loads(lines[-1])
