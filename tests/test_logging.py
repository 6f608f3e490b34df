"""Tests for the structured logging utilities."""
import json
import logging

import pytest

from anglesync.errors import ConfigurationError
from anglesync.utils.logging import (
    JSONFormatter,
    LogConfig,
    SyncLogger,
    TextFormatter,
    configure_from_cli,
    configure_logging,
    get_cli_args_parser,
    set_level,
)


def make_record(message="Drift correction", name="anglesync.playback.clock", **extra_fields):
    record = logging.LogRecord(name, logging.INFO, "clock.py", 42, message, None, None)
    if extra_fields:
        record.extra_fields = extra_fields
    return record


class TestLogConfig:
    """Tests for LogConfig validation."""

    def test_defaults(self):
        config = LogConfig()
        assert config.log_level == "INFO"
        assert config.log_format == "text"
        assert config.log_file is None

    def test_invalid_level(self):
        with pytest.raises(ConfigurationError):
            LogConfig(log_level="LOUD")

    def test_invalid_format(self):
        with pytest.raises(ConfigurationError):
            LogConfig(log_format="xml")

    def test_invalid_component_level(self):
        with pytest.raises(ConfigurationError, match="playback"):
            LogConfig(component_levels={"playback": "CHATTY"})

    def test_levels_are_normalized(self):
        config = LogConfig(log_level="debug", component_levels={"playback.clock": "warning"})
        assert config.log_level == "DEBUG"
        assert config.component_levels == {"playback.clock": "WARNING"}


class TestFormatters:
    """Tests for text and JSON output."""

    def test_json_formatter(self):
        output = JSONFormatter().format(make_record(stream=1, drift=0.14))
        data = json.loads(output)

        assert data["level"] == "INFO"
        assert data["component"] == "clock"
        assert data["message"] == "Drift correction"
        assert data["stream"] == 1
        assert data["drift"] == 0.14
        assert data["timestamp"].endswith("Z")

    def test_json_formatter_source(self):
        data = json.loads(JSONFormatter(include_source=True).format(make_record()))
        assert data["source"]["line"] == 42

    def test_text_formatter(self):
        output = TextFormatter(include_timestamp=False).format(make_record(stream=1))
        assert output.startswith("INFO")
        assert "anglesync.playback.clock" in output
        assert output.endswith("Drift correction [stream=1]")

    def test_text_formatter_leaves_record_untouched(self):
        record = make_record(stream=1)
        TextFormatter().format(record)
        assert record.getMessage() == "Drift correction"


class TestSyncLogger:
    """Tests for the structured logger adapter."""

    def test_keyword_fields_become_extra_fields(self, caplog):
        logger = SyncLogger(logging.getLogger("anglesync.test"), "test")
        with caplog.at_level(logging.INFO, logger="anglesync"):
            logger.info("Seek applied", stream=1, target=4.2)

        record = caplog.records[-1]
        assert record.getMessage() == "Seek applied"
        assert record.extra_fields == {"stream": 1, "target": 4.2}

    def test_adapter_extra_and_exc_info(self, caplog):
        logger = SyncLogger(logging.getLogger("anglesync.test"), "test", extra={"session": "match"})
        with caplog.at_level(logging.INFO, logger="anglesync"):
            try:
                raise ValueError("bad seek")
            except ValueError:
                logger.error("Seek rejected", exc_info=True, value=-3)

        record = caplog.records[-1]
        assert record.extra_fields == {"session": "match", "value": -3}
        assert record.exc_info[0] is ValueError


class TestConfigureLogging:
    """Tests for handler setup."""

    def test_replaces_handlers(self):
        configure_logging(LogConfig())
        configure_logging(LogConfig(log_level="DEBUG"))

        package_logger = logging.getLogger("anglesync")
        assert len(package_logger.handlers) == 1
        assert package_logger.level == logging.DEBUG
        assert package_logger.propagate is False

    def test_log_file(self, tmp_path):
        log_file = tmp_path / "logs" / "anglesync.log"
        configure_logging(LogConfig(log_format="json", log_file=str(log_file)))

        logging.getLogger("anglesync.analyzer").warning("Low confidence")
        for handler in logging.getLogger("anglesync").handlers:
            handler.flush()

        line = log_file.read_text(encoding="utf-8").strip().splitlines()[-1]
        assert json.loads(line)["message"] == "Low confidence"

    def test_component_levels(self):
        configure_logging(LogConfig(component_levels={"playback.clock": "ERROR"}))
        try:
            assert logging.getLogger("anglesync.playback.clock").level == logging.ERROR
        finally:
            logging.getLogger("anglesync.playback.clock").setLevel(logging.NOTSET)

    def test_set_level(self):
        set_level("ERROR", "analyzer")
        try:
            assert logging.getLogger("anglesync.analyzer").level == logging.ERROR
        finally:
            logging.getLogger("anglesync.analyzer").setLevel(logging.NOTSET)

    def test_configure_from_cli(self):
        config = configure_from_cli(log_level="debug", log_format="bogus")
        assert config.log_level == "DEBUG"
        assert config.log_format == "text"

    def test_cli_arguments(self):
        names = [args[0] for args, _ in get_cli_args_parser()]
        assert names == ["--log-level", "--log-format", "--log-file"]
