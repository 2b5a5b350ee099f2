from __future__ import annotations

import logging
from io import StringIO
from unittest.mock import patch

import mapa_import.logging.init as log_init
from mapa_import.logging.init import (
    LabeledFormatter,
    get_logger,
    log_summary,
    set_debug,
    setup_logging,
)


def _capture(logger: logging.Logger) -> StringIO:
    """Point the package handler at a StringIO."""
    buf = StringIO()
    logger.handlers[0].setStream(buf)
    return buf


def test_setup_logging_creates_logger_with_labeled_formatter():
    logger = setup_logging()
    assert logger.name == "mapa_import"
    assert logger.level == logging.INFO
    assert logger.propagate is False
    assert len(logger.handlers) == 1
    handler = logger.handlers[0]
    assert isinstance(handler, logging.StreamHandler)
    assert isinstance(handler.formatter, LabeledFormatter)


def test_logging_labeled_prefixes():
    """Every line starts with INFO|WARN|ERROR|SUMMARY."""
    logger = setup_logging()
    buf = _capture(logger)

    logger.info("Test info message")
    logger.warning("Test warning message")
    logger.error("Test error message")
    logger.log(25, "Test summary message")

    lines = buf.getvalue().strip().split("\n")
    assert lines == [
        "INFO Test info message",
        "WARN Test warning message",
        "ERROR Test error message",
        "SUMMARY Test summary message",
    ]


def test_module_loggers_inherit_package_handler():
    buf = _capture(setup_logging())
    logging.getLogger("mapa_import.services.publisher").warning("retrying stage")
    assert buf.getvalue() == "WARN retrying stage\n"


def test_error_with_exception_includes_traceback():
    buf = _capture(setup_logging())
    try:
        raise ValueError("boom")
    except ValueError:
        get_logger().exception("failed")
    out = buf.getvalue()
    assert out.startswith("ERROR failed\n")
    assert "ValueError: boom" in out


def test_get_logger_returns_configured_logger():
    configured = setup_logging()
    assert get_logger() is configured


def test_setup_logging_idempotent():
    logger1 = setup_logging()
    logger2 = setup_logging()
    assert logger1 is logger2
    assert len(logger1.handlers) == 1


def test_reset_logging_removes_handlers():
    logger = setup_logging()
    log_init.reset_logging()
    assert logger.handlers == []
    assert log_init._logger is None


def test_set_debug_toggles_levels():
    logger = setup_logging()
    buf = _capture(logger)
    logger.debug("hidden")
    set_debug(True)
    logger.debug("shown")
    set_debug(False)
    logger.debug("hidden again")
    assert buf.getvalue() == "DEBUG shown\n"
    assert logger.level == logging.INFO


def test_summary_level_name():
    setup_logging()
    assert logging.getLevelName(25) == "SUMMARY"


def test_log_summary_convenience_function():
    buf = _capture(setup_logging())
    log_summary("analyzed=2 valid=2 errors=0 warnings=0 infos=0 version=1 imported=2")
    assert buf.getvalue() == "SUMMARY analyzed=2 valid=2 errors=0 warnings=0 infos=0 version=1 imported=2\n"


def test_logging_with_progress_bar_disabled():
    with patch("sys.stdout.isatty", return_value=False):
        logger = setup_logging()
        logger.info("Test message when not TTY")
        assert logger.level == logging.INFO
