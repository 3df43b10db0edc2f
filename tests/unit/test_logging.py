"""
Tests for the logging module.
"""

import json
import logging

import pytest
import structlog


class TestConfigureLogging:
    """Tests for configure_logging function."""

    def test_configure_console_and_json(self):
        """Both renderers configure without error."""
        from core.logging import configure_logging

        configure_logging(json_logs=False, log_level="DEBUG")
        configure_logging(json_logs=True, log_level="INFO")

    def test_configure_log_level(self):
        """Root logger level follows log_level."""
        from core.logging import configure_logging

        configure_logging(log_level="WARNING")
        assert logging.getLogger().level == logging.WARNING

        configure_logging(log_level="debug")
        assert logging.getLogger().level == logging.DEBUG

    def test_unknown_level_falls_back_to_info(self):
        from core.logging import configure_logging

        configure_logging(log_level="CHATTY")
        assert logging.getLogger().level == logging.INFO

    def test_noisy_loggers_quieted(self):
        from core.logging import NOISY_LOGGERS, configure_logging

        configure_logging(log_level="DEBUG")
        for name in NOISY_LOGGERS:
            assert logging.getLogger(name).level == logging.WARNING

    def test_configure_from_settings(self):
        from config.settings import get_settings_for_testing
        from core.logging import configure_logging_from_settings

        configure_logging_from_settings(get_settings_for_testing(log_level="ERROR", json_logs=True))
        assert logging.getLogger().level == logging.ERROR


class TestGetLogger:
    """Tests for get_logger function."""

    def test_logger_can_log(self):
        """Key-value events of any shape are accepted."""
        from core.logging import configure_logging, get_logger

        configure_logging(json_logs=False, log_level="DEBUG")
        logger = get_logger("foryou.test")

        logger.info("Feed page served", scope="guest", items=40)
        logger.debug("Debug rows", rows=[{"handle": "a", "score": 1.5}])
        logger.warning("Candidate source failed", source="search", error="timeout")


class TestContextBinding:
    """Tests for request-scoped context binding."""

    def test_bind_and_unbind(self):
        from core.logging import bind_context, clear_context, unbind_context

        clear_context()
        bind_context(request_id="abc", customer_id="42", path="/api/for-you/feed")
        unbind_context("path")

        ctx = structlog.contextvars.get_contextvars()
        assert ctx.get("request_id") == "abc"
        assert ctx.get("customer_id") == "42"
        assert "path" not in ctx

        clear_context()
        assert structlog.contextvars.get_contextvars() == {}


class TestLoggerMixin:
    """Tests for LoggerMixin class."""

    def test_mixin_provides_logger(self):
        from core.logging import LoggerMixin, configure_logging

        configure_logging(json_logs=False)

        class RankingWorker(LoggerMixin):
            def run(self):
                self.logger.info("Ranking", items=3)

        worker = RankingWorker()
        assert worker.logger is not None
        worker.run()


class TestJSONOutput:
    """Tests for JSON logging output."""

    def test_json_output_is_valid_json(self, capsys):
        from core.logging import configure_logging, get_logger

        configure_logging(json_logs=True, log_level="INFO")
        get_logger("json_test").info("Reel page served", seed_handle="jeans-0")

        captured = capsys.readouterr()
        for line in captured.out.strip().splitlines():
            if line.startswith("{"):
                data = json.loads(line)
                assert "event" in data


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
