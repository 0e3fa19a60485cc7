"""
Centralized logging for Lingua.

Session errors go to a log file so they survive the terminal session.
Package modules log through children of the ``lingua`` logger.
"""

import logging
from pathlib import Path

# Create logs directory if it doesn't exist
LOGS_DIR = Path(__file__).parent.parent / "logs"
LOGS_DIR.mkdir(exist_ok=True)

# Log file path
LOG_FILE = LOGS_DIR / "lingua.log"

LOGGER_NAME = 'lingua'


class TutorLogger:
    """Centralized logger for the Lingua application."""

    _instance = None
    _logger = None

    def __init__(self, level=logging.WARNING):
        """Initialize the logger (singleton)."""
        if TutorLogger._logger is None:
            TutorLogger._logger = self._setup_logger(level)

    @classmethod
    def get_logger(cls):
        """Get the singleton logger instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._logger

    @classmethod
    def set_level(cls, level):
        """Change the threshold of the logger and its file handler.

        Accepts a logging constant or a level name such as ``"DEBUG"``.
        """
        if isinstance(level, str):
            level = logging.getLevelName(level.upper())
            if not isinstance(level, int):
                level = logging.WARNING
        logger = cls.get_logger()
        logger.setLevel(level)
        for handler in logger.handlers:
            handler.setLevel(level)

    def _setup_logger(self, level):
        """Set up the file logger with no console output."""
        logger = logging.getLogger(LOGGER_NAME)
        logger.setLevel(level)

        # Remove any existing handlers
        logger.handlers = []

        file_handler = logging.FileHandler(LOG_FILE, mode='a', encoding='utf-8')
        file_handler.setLevel(level)

        # Format: [2024-01-15 14:30:25] ERROR - message
        formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        file_handler.setFormatter(formatter)

        logger.addHandler(file_handler)

        return logger


def get_logger(area=None):
    """Return the application logger, or a child of it for ``area``."""
    logger = TutorLogger.get_logger()
    if area:
        return logger.getChild(area)
    return logger


# Convenience functions for logging
def log_error(message, exception=None):
    """
    Log an error message to file.

    Args:
        message: Error message string
        exception: Optional exception object to include traceback
    """
    logger = TutorLogger.get_logger()
    if exception:
        logger.error(f"{message}: {str(exception)}", exc_info=exception)
    else:
        logger.error(message)


def log_exception(exception, context=""):
    """
    Log an exception with full traceback.

    Args:
        exception: Exception object
        context: Optional context string (e.g., "in playback")
    """
    logger = TutorLogger.get_logger()
    if context:
        logger.error(f"Exception {context}", exc_info=exception)
    else:
        logger.error("Exception occurred", exc_info=exception)


# Initialize logger on import
TutorLogger.get_logger()
