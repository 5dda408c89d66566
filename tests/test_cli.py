"""Tests for CLI logging setup."""

import json
import logging
import sys

import pytest

from habitsync.__main__ import JSONFormatter, setup_logging


@pytest.fixture
def restore_http_loggers():
    names = ("httpx", "httpcore", "uvicorn.access")
    levels = {name: logging.getLogger(name).level for name in names}
    yield
    for name, level in levels.items():
        logging.getLogger(name).setLevel(level)


def make_record(msg: str, exc_info=None) -> logging.LogRecord:
    return logging.LogRecord(
        name="habitsync.sync.engine",
        level=logging.WARNING,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )


class TestJSONFormatter:
    """Tests for JSON log lines."""

    def test_fields(self):
        line = JSONFormatter().format(make_record("Push failed"))
        data = json.loads(line)

        assert data["level"] == "WARNING"
        assert data["component"] == "habitsync.sync.engine"
        assert data["message"] == "Push failed"
        assert data["timestamp"].endswith("+00:00")
        assert "exception" not in data

    def test_exception_included(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = make_record("Sync loop error", exc_info=sys.exc_info())

        data = json.loads(JSONFormatter().format(record))

        assert "RuntimeError: boom" in data["exception"]


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_http_loggers_quiet_at_info(self, restore_http_loggers):
        setup_logging(log_level="info")
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_http_loggers_follow_debug(self, restore_http_loggers):
        setup_logging(verbose=True)
        assert logging.getLogger("httpx").level == logging.DEBUG
