"""
Tests for logging setup.

Each test configures its own logger name so the package logger (which
other tests capture through caplog) keeps propagating.
"""

import logging
import logging.handlers

from quant_analytics import logging_config
from quant_analytics.logging_config import ColoredFormatter, get_logger, log_exception, setup_logging


class TestSetupLogging:
    def test_level_and_console_handler(self):
        logger = setup_logging("qa_test.console", level="DEBUG")
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, ColoredFormatter)
        assert not logger.propagate

    def test_repeated_setup_replaces_handlers(self):
        setup_logging("qa_test.repeat", level="INFO")
        logger = setup_logging("qa_test.repeat", level="INFO")
        assert len(logger.handlers) == 1

    def test_level_from_environment(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        monkeypatch.delenv("LOG_FILE", raising=False)
        logger = setup_logging("qa_test.env", console=False)
        assert logger.level == logging.ERROR
        assert logger.handlers == []

    def test_rotating_file(self, tmp_path):
        log_file = tmp_path / "nested" / "engine.log"
        logger = setup_logging("qa_test.file", level="INFO", log_file=str(log_file), console=False)
        logger.info("engine started")
        for handler in logger.handlers:
            handler.flush()

        assert isinstance(logger.handlers[0], logging.handlers.RotatingFileHandler)
        content = log_file.read_text(encoding="utf-8")
        assert "engine started" in content
        assert "qa_test.file" in content

    def test_json_format(self, tmp_path):
        log_file = tmp_path / "engine.jsonl"
        logger = setup_logging(
            "qa_test.json", level="INFO", log_file=str(log_file), console=False, json_format=True
        )
        logger.warning("feed stale")
        for handler in logger.handlers:
            handler.flush()

        line = log_file.read_text(encoding="utf-8").strip()
        assert line.startswith("{")
        assert '"level": "WARNING"' in line
        assert '"message": "feed stale"' in line


class TestHelpers:
    def test_colored_formatter_restores_levelname(self):
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "hello", None, None)
        output = ColoredFormatter("%(levelname)s %(message)s").format(record)
        assert "\033[32m" in output
        assert record.levelname == "INFO"

    def test_get_logger_configures_once_when_unconfigured(self, monkeypatch):
        calls = []
        monkeypatch.setattr(logging_config, "setup_logging", lambda *a, **k: calls.append(k))
        monkeypatch.setattr(logging.getLogger(), "handlers", [])
        monkeypatch.setattr(logging.getLogger("quant_analytics"), "handlers", [])

        logger = get_logger("quant_analytics.engines.alerts")
        assert logger.name == "quant_analytics.engines.alerts"
        assert calls == [{}]

    def test_log_exception(self, tmp_path):
        log_file = tmp_path / "errors.log"
        logger = setup_logging("qa_test.exc", level="INFO", log_file=str(log_file), console=False)
        try:
            raise ValueError("bad tick")
        except ValueError as exc:
            log_exception(logger, exc, "Tick rejected")
        for handler in logger.handlers:
            handler.flush()

        content = log_file.read_text(encoding="utf-8")
        assert "Tick rejected: bad tick" in content
        assert "Traceback" in content
