"""
Logging utilities for cloud preparation.
"""
import logging
import logging.handlers
import os
from typing import Optional
from pathlib import Path


def setup_logging(
    log_dir: Optional[str] = None,
    level: int = logging.INFO,
    log_to_console: bool = True,
    log_to_file: bool = False,
    log_filename: str = "cloudprep.log",
    max_bytes: int = 10485760,  # 10MB
    backup_count: int = 5,
) -> logging.Logger:
    """Set up logging configuration.

    Args:
        log_dir: Directory to store log files. If None, use 'logs' in current directory.
        level: Logging level.
        log_to_console: Whether to log to console.
        log_to_file: Whether to log to file.
        log_filename: Log file name.
        max_bytes: Maximum log file size before rotating.
        backup_count: Number of backup log files to keep.

    Returns:
        Configured root logger.
    """
    logger = logging.getLogger()
    logger.setLevel(level)

    file_formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    console_formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    if log_to_console:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(console_formatter)
        logger.addHandler(console_handler)

    if log_to_file:
        log_path = Path(log_dir or "logs")
        os.makedirs(log_path, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_path / log_filename, maxBytes=max_bytes, backupCount=backup_count
        )
        file_handler.setFormatter(file_formatter)
        logger.addHandler(file_handler)

    # SDK loggers are chatty at INFO
    for noisy in ("botocore", "urllib3", "azure", "openstack", "keystoneauth"):
        logging.getLogger(noisy).setLevel(max(level, logging.WARNING))

    return logger


def level_from_name(name: Optional[str], default: int = logging.INFO) -> int:
    """Translate a level name such as ``"debug"`` to its logging constant."""
    if not name:
        return default
    value = logging.getLevelName(str(name).upper())
    return value if isinstance(value, int) else default
