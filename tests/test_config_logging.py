"""
Tests for settings, logging setup and the retry decorator.
"""
import json
import logging

import pytest

from tmplink.config import Settings
from tmplink.utils.logging import setup_logging
from tmplink.utils.retry import retry


class TestSettings:
    """Test loading settings from the environment."""

    def test_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.DB_URL.startswith("sqlite")
        assert settings.AUDIT_ENABLED is True
        assert settings.SQL_BUFFER_LIMIT == 65535

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("TMPLINK_DB_URL", "sqlite+pysqlite:///:memory:")
        monkeypatch.setenv("TMPLINK_AUDIT_ENABLED", "false")
        monkeypatch.setenv("TMPLINK_DELETE_BATCH_SIZE", "10")

        settings = Settings(_env_file=None)

        assert settings.DB_URL == "sqlite+pysqlite:///:memory:"
        assert settings.AUDIT_ENABLED is False
        assert settings.DELETE_BATCH_SIZE == 10

    def test_unprefixed_variable_ignored(self, monkeypatch):
        monkeypatch.setenv("DB_URL", "postgresql://elsewhere/db")
        assert Settings(_env_file=None).DB_URL != "postgresql://elsewhere/db"


@pytest.fixture
def logger():
    logger = logging.getLogger("tmplink.tests.setup")
    logger.propagate = False
    yield logger
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.propagate = True


class TestSetupLogging:
    """Test console logging configuration."""

    def test_text_format(self, logger, monkeypatch):
        monkeypatch.setenv("TMPLINK_LOG_LEVEL", "debug")
        monkeypatch.delenv("TMPLINK_LOG_FORMAT", raising=False)

        setup_logging(logger=logger)

        (handler,) = logger.handlers
        assert logger.level == logging.DEBUG
        record = logger.makeRecord(logger.name, logging.INFO, __file__, 1, "linked %s", ("H1",), None)
        assert handler.format(record).endswith("INFO - tmplink.tests.setup - linked H1")

    def test_json_format(self, logger, monkeypatch):
        monkeypatch.setenv("TMPLINK_LOG_FORMAT", "json")

        setup_logging(logger=logger)

        record = logger.makeRecord(logger.name, logging.WARNING, __file__, 1, "cannot link", (), None)
        payload = json.loads(logger.handlers[0].format(record))
        assert payload["level"] == "WARNING"
        assert payload["logger"] == "tmplink.tests.setup"
        assert payload["message"] == "cannot link"

    def test_noop_when_configured(self, logger):
        setup_logging(logger=logger)
        setup_logging(logger=logger)
        assert len(logger.handlers) == 1

    def test_force_replaces_handlers(self, logger):
        setup_logging(logger=logger)
        first = logger.handlers[0]

        setup_logging(force=True, logger=logger)

        assert len(logger.handlers) == 1
        assert logger.handlers[0] is not first

    def test_unknown_level_falls_back_to_info(self, logger, monkeypatch):
        monkeypatch.setenv("TMPLINK_LOG_LEVEL", "chatty")
        setup_logging(logger=logger)
        assert logger.level == logging.INFO


class TestRetry:
    """Test the retry decorator."""

    def test_succeeds_after_failures(self, caplog):
        calls = []

        @retry(retries=3, delay=0.0, catch_exceptions=ValueError)
        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise ValueError("not yet")
            return "done"

        with caplog.at_level(logging.WARNING):
            assert flaky() == "done"
        assert len(calls) == 3
        assert "Attempt 1/4 for 'flaky' failed" in caplog.text

    def test_gives_up(self):
        calls = []

        @retry(retries=2, delay=0.0, catch_exceptions=ValueError)
        def broken():
            calls.append(1)
            raise ValueError("down")

        with pytest.raises(ValueError, match="down"):
            broken()
        assert len(calls) == 3

    def test_other_exceptions_not_retried(self):
        calls = []

        @retry(retries=3, delay=0.0, catch_exceptions=ValueError)
        def broken():
            calls.append(1)
            raise KeyError("id")

        with pytest.raises(KeyError):
            broken()
        assert len(calls) == 1
