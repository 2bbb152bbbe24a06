"""Tests for Structured JSON Logger."""

import io
import json
import logging

import pytest

from capturedesk.core.logger import (
    JSONFormatter,
    get_capture_logger,
    get_logger,
    setup_logging,
)


@pytest.fixture(autouse=True)
def restore_root_logger():
    """Put the root logger back the way pytest configured it."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


def _capture(level: str = "DEBUG") -> io.StringIO:
    stream = io.StringIO()
    setup_logging(level=level, stream=stream)
    return stream


class TestJSONFormatter:
    """Test JSON log formatting."""

    def test_logger_json_format(self):
        """Output should be valid JSON with ts, level and msg."""
        stream = _capture()
        get_logger("test").info("Test message")

        entry = json.loads(stream.getvalue().strip())
        assert entry["msg"] == "Test message"
        assert entry["level"] == "INFO"
        assert entry["logger"] == "test"
        assert "+" in entry["ts"] or entry["ts"].endswith("Z")

    def test_extra_fields_are_included(self):
        stream = _capture()
        get_logger("test").info("Published", extra={"commit": "abc", "files": 3})

        entry = json.loads(stream.getvalue().strip())
        assert entry["commit"] == "abc"
        assert entry["files"] == 3

    def test_reserved_attributes_are_not_copied(self):
        stream = _capture()
        get_logger("test").info("hello")

        entry = json.loads(stream.getvalue().strip())
        assert "pathname" not in entry
        assert "lineno" not in entry

    def test_exception_is_formatted(self):
        stream = _capture()
        try:
            raise RuntimeError("kaput")
        except RuntimeError:
            get_logger("test").exception("Failed")

        entry = json.loads(stream.getvalue().strip())
        assert "RuntimeError: kaput" in entry["exception"]

    def test_non_serializable_extra_uses_str(self):
        record = logging.LogRecord("t", logging.INFO, __file__, 1, "m", None, None)
        record.path = object()
        entry = json.loads(JSONFormatter().format(record))
        assert entry["path"].startswith("<object")


class TestLogLevels:
    """Test level filtering."""

    def test_level_filters_lower_messages(self):
        stream = _capture("WARNING")
        logger = get_logger("test")
        logger.info("hidden")
        logger.warning("shown")

        lines = stream.getvalue().strip().splitlines()
        assert len(lines) == 1
        assert json.loads(lines[0])["msg"] == "shown"

    def test_setup_logging_replaces_handlers(self):
        _capture()
        stream = _capture()
        get_logger("test").info("once")
        assert len(stream.getvalue().strip().splitlines()) == 1
        assert len(logging.getLogger().handlers) == 1


class TestCaptureLogger:
    """Test capture_id context adapter."""

    def test_capture_id_is_added(self):
        stream = _capture()
        get_capture_logger("test", "lq2x9k-abc123").info("Approved")

        entry = json.loads(stream.getvalue().strip())
        assert entry["capture_id"] == "lq2x9k-abc123"

    def test_capture_id_merges_with_extra(self):
        stream = _capture()
        get_capture_logger("test", "id-1").info("Updated", extra={"fields": ["tags"]})

        entry = json.loads(stream.getvalue().strip())
        assert entry["capture_id"] == "id-1"
        assert entry["fields"] == ["tags"]

    def test_adapter_context_wins_over_extra(self):
        stream = _capture()
        get_capture_logger("test", "id-1").info("Moved", extra={"capture_id": "id-2"})

        entry = json.loads(stream.getvalue().strip())
        assert entry["capture_id"] == "id-1"

    def test_additional_context_fields(self):
        stream = _capture()
        logger = get_capture_logger("test", "id-1", path="src/content/til/a.md")
        logger.warning("Output path taken")

        entry = json.loads(stream.getvalue().strip())
        assert entry["path"] == "src/content/til/a.md"
        assert logger.capture_id == "id-1"


class TestRecordFields:
    """Test fields taken from the log record itself."""

    def test_ts_uses_record_creation_time(self):
        record = logging.LogRecord("t", logging.INFO, __file__, 1, "m", None, None)
        record.created = 1769164200.5
        entry = json.loads(JSONFormatter().format(record))
        assert entry["ts"] == "2026-01-23T10:30:00.500000+00:00"

    def test_stack_info_is_included(self):
        stream = _capture()
        get_logger("test").info("Where", stack_info=True)

        entry = json.loads(stream.getvalue().strip())
        assert entry["stack"].startswith("Stack (most recent call last)")
        assert "stack_info" not in entry
