"""Tests for structured logging system."""

import json
import logging
import sys
from io import StringIO

from volback.logging_config import (
    ROOT_LOGGER_NAME,
    ContextFilter,
    JSONFormatter,
    PlainFormatter,
    configure_logging,
    log_context,
)


def make_record(msg="Test message", level=logging.INFO, exc_info=None):
    return logging.LogRecord(
        name="test",
        level=level,
        pathname="test.py",
        lineno=42,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )


def capture(logger_name, formatter):
    logger = logging.getLogger(logger_name)
    logger.setLevel(logging.INFO)
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(formatter)
    handler.addFilter(ContextFilter())
    logger.addHandler(handler)
    return logger, handler, stream


class TestJSONFormatter:
    """Test suite for JSON log formatter."""

    def test_format_basic_log_message(self):
        """Test that basic log message is formatted as JSON."""
        log_data = json.loads(JSONFormatter().format(make_record()))

        assert log_data["message"] == "Test message"
        assert log_data["level"] == "INFO"
        assert log_data["logger"] == "test"
        assert "timestamp" in log_data
        assert log_data["filename"] == "test.py"
        assert log_data["lineno"] == 42

    def test_format_includes_exception_info(self):
        """Test that exception info is included in JSON logs."""
        try:
            raise ValueError("Test error")
        except ValueError:
            exc_info = sys.exc_info()

        record = make_record("Error occurred", level=logging.ERROR, exc_info=exc_info)
        log_data = json.loads(JSONFormatter().format(record))

        assert log_data["level"] == "ERROR"
        assert "ValueError" in log_data["exception"]
        assert "Test error" in log_data["exception"]

    def test_format_includes_extra_fields(self):
        """Test that extra fields are included in JSON logs."""
        record = make_record()
        record.container = "nextcloud"
        record.backup_id = "cloud"
        record.offset = 1024

        log_data = json.loads(JSONFormatter().format(record))

        assert log_data["container"] == "nextcloud"
        assert log_data["backup_id"] == "cloud"
        assert log_data["offset"] == 1024

    def test_format_handles_non_json_serializable_extra_fields(self):
        """Test that non-JSON-serializable fields are converted to strings."""

        class CustomObject:
            def __str__(self):
                return "<CustomObject>"

        record = make_record()
        record.custom_obj = CustomObject()

        log_data = json.loads(JSONFormatter().format(record))

        assert log_data["custom_obj"] == "<CustomObject>"


class TestPlainFormatter:
    """Test suite for plain text formatter."""

    def test_format_appends_extra_fields_sorted(self):
        """Test that extra fields are appended as sorted key=value pairs."""
        record = make_record("Uploading")
        record.container = "db"
        record.backup_id = "database"

        line = PlainFormatter().format(record)

        assert "INFO" in line
        assert "test: Uploading" in line
        assert line.endswith("[backup_id=database container=db]")

    def test_format_without_extra_fields(self):
        """Test that no brackets are added without extra fields."""
        line = PlainFormatter().format(make_record("Plain"))
        assert line.endswith("test: Plain")

    def test_timestamp_is_not_repeated_as_extra_field(self):
        """Test that the formatter's own asctime is not appended again."""
        record = make_record("Stamped")
        record.container = "db"

        line = PlainFormatter().format(record)

        assert "asctime=" not in line
        assert line.endswith("test: Stamped [container=db]")


class TestContextFilter:
    """Test suite for context filter."""

    def test_filter_adds_context_to_record(self):
        """Test that context filter adds static context fields to log record."""
        record = make_record()
        ContextFilter({"run_id": "abc123"}).filter(record)
        assert record.run_id == "abc123"

    def test_filter_allows_all_records(self):
        """Test that context filter doesn't block any records."""
        assert ContextFilter().filter(make_record()) is True


class TestLogContext:
    """Test suite for log context manager."""

    def test_context_manager_adds_fields_to_logs(self):
        """Test that context manager adds fields to all logs within context."""
        logger, handler, stream = capture("test_volback_context", JSONFormatter())

        with log_context(container="nextcloud", backup_id="cloud"):
            logger.info("Stopping container")
            logger.info("Archiving volumes")

        logger.removeHandler(handler)

        lines = [line for line in stream.getvalue().strip().split("\n") if line]
        assert len(lines) == 2
        for line in lines:
            log_data = json.loads(line)
            assert log_data["container"] == "nextcloud"
            assert log_data["backup_id"] == "cloud"

    def test_context_manager_cleans_up_after_exit(self):
        """Test that context is removed after exiting context manager."""
        logger, handler, stream = capture("test_volback_cleanup", JSONFormatter())

        with log_context(container="db"):
            logger.info("Inside")
        logger.info("Outside")

        logger.removeHandler(handler)

        lines = stream.getvalue().strip().split("\n")
        assert json.loads(lines[0])["container"] == "db"
        assert "container" not in json.loads(lines[1])

    def test_nested_contexts_restore_outer_fields(self):
        """Test that nested contexts restore the outer values on exit."""
        logger, handler, stream = capture("test_volback_nested", JSONFormatter())

        with log_context(container="outer"):
            with log_context(container="inner", phase="upload"):
                logger.info("Inner")
            logger.info("Outer")

        logger.removeHandler(handler)

        inner, outer = [json.loads(line) for line in stream.getvalue().strip().split("\n")]
        assert inner["container"] == "inner"
        assert inner["phase"] == "upload"
        assert outer["container"] == "outer"
        assert "phase" not in outer

    def test_context_is_restored_after_exception(self):
        """Test that context is restored even when the block raises."""
        logger, handler, stream = capture("test_volback_raise", JSONFormatter())

        try:
            with log_context(container="db"):
                raise RuntimeError("fail")
        except RuntimeError:
            pass
        logger.info("After")

        logger.removeHandler(handler)
        assert "container" not in json.loads(stream.getvalue().strip())


class TestConfigureLogging:
    """Test suite for logging configuration."""

    def test_configure_logging_sets_level_and_handler(self):
        """Test that configure_logging configures the volback logger."""
        logger = configure_logging(level="DEBUG")

        assert logger.name == ROOT_LOGGER_NAME
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, PlainFormatter)
        assert logger.propagate is False

    def test_configure_logging_json_format(self):
        """Test that json_format selects the JSON formatter."""
        logger = configure_logging(json_format=True)
        assert isinstance(logger.handlers[0].formatter, JSONFormatter)

    def test_configure_logging_replaces_handlers(self):
        """Test that calling configure_logging twice does not stack handlers."""
        configure_logging()
        logger = configure_logging()
        assert len(logger.handlers) == 1

    def test_configure_logging_with_file(self, tmp_path):
        """Test that log_file adds a file handler receiving records."""
        log_file = tmp_path / "volback.log"
        logger = configure_logging(level="INFO", json_format=True, log_file=str(log_file))

        logging.getLogger("volback.runner").info("written to file")
        for handler in logger.handlers:
            handler.flush()

        assert len(logger.handlers) == 2
        log_data = json.loads(log_file.read_text().strip())
        assert log_data["message"] == "written to file"
        assert log_data["logger"] == "volback.runner"

        configure_logging()
