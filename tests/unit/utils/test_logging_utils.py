"""
Tests for logging utilities.
"""
import logging
import logging.handlers

from cloudprep.utils.logging_utils import level_from_name, setup_logging


def test_setup_logging_console_only():
    logger = setup_logging(level=logging.DEBUG)

    assert logger.level == logging.DEBUG
    assert len(logger.handlers) == 1
    assert logging.getLogger("botocore").level == logging.WARNING


def test_setup_logging_to_file(tmp_path):
    """Test a rotating file handler is added when requested."""
    logger = setup_logging(log_dir=str(tmp_path), log_to_console=False, log_to_file=True)

    handlers = [h for h in logger.handlers if isinstance(h, logging.handlers.RotatingFileHandler)]
    assert len(handlers) == 1
    assert (tmp_path / "cloudprep.log").exists()

    for handler in handlers:
        handler.close()
        logger.removeHandler(handler)


def test_level_from_name():
    assert level_from_name("debug") == logging.DEBUG
    assert level_from_name(None) == logging.INFO
    assert level_from_name("nonsense", logging.WARNING) == logging.WARNING
