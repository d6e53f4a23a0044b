"""
logger.py - Logging utilities for the closet NFC backend.

This module provides consistent logging functionality across all modules of the application.
"""

import logging
import os
from logging.handlers import RotatingFileHandler

LOG_FORMAT = '[%(asctime)s] [%(levelname)s] [%(name)s] - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def _build_formatter():
    return logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)


def setup_logger(name, log_file=None, level=logging.INFO):
    """
    Set up a logger with console and optional rotating file output.

    Args:
        name (str): Logger name, typically the package name
        log_file (str, optional): Path to log file, if None logs to console only
        level (int, optional): Logging level

    Returns:
        Logger: Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Avoid stacking handlers when the app is initialised more than once
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(_build_formatter())
    logger.addHandler(console_handler)

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

        # 10 MB per file, max 5 files
        file_handler = RotatingFileHandler(
            log_file, maxBytes=10*1024*1024, backupCount=5
        )
        file_handler.setFormatter(_build_formatter())
        logger.addHandler(file_handler)

    return logger


def configure_logging(config):
    """
    Configure the package logger from the ``logging`` config section.

    Args:
        config (dict): Application configuration

    Returns:
        Logger: The configured ``closet_backend`` logger
    """
    section = config.get('logging', {})
    level_name = str(section.get('level', 'INFO')).upper()
    level = getattr(logging, level_name, logging.INFO)
    return setup_logger('closet_backend', log_file=section.get('file'), level=level)


def get_logger(name):
    """
    Get a logger instance by name.

    Loggers inside the ``closet_backend`` package propagate to the package
    logger configured by ``configure_logging``; anything else gets a basic
    console handler if it has none.

    Args:
        name (str): Logger name

    Returns:
        Logger: Logger instance
    """
    logger = logging.getLogger(name)

    if not name.startswith('closet_backend') and not logger.handlers:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(_build_formatter())
        logger.addHandler(console_handler)

    return logger


def set_global_log_level(level):
    """
    Set the log level for all loggers.

    Args:
        level (int): Logging level (e.g., logging.INFO)
    """
    for logger_name in logging.root.manager.loggerDict:
        logging.getLogger(logger_name).setLevel(level)

    logging.getLogger().setLevel(level)
