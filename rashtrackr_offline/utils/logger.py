"""Logger utility for the RashTrackr offline cache controller.

This module provides a configurable logging system driven by the ``logging``
section of the controller configuration, so hosts can route controller logs
into their own logger hierarchy.
"""

import logging
import logging.handlers
import sys
from typing import Any, Dict, Optional

PACKAGE_LOGGER = "rashtrackr_offline"

DEFAULT_LOGGING_CONFIG = {
    "level": "INFO",
    "parent_logger": None,
    "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    "date_format": "%Y-%m-%d %H:%M:%S",
    "enable_console": True,
    "enable_file": False,
    "file_path": None,
    "max_file_size": 10485760,
    "backup_count": 5,
}


class ColorFormatter(logging.Formatter):
    """Formatter that colours the whole record by level for console output."""

    COLORS = {
        "DEBUG": "\033[94m",  # Blue
        "INFO": "\033[92m",  # Green
        "WARNING": "\033[93m",  # Yellow
        "ERROR": "\033[91m",  # Red
        "CRITICAL": "\033[95m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record):
        color = self.COLORS.get(record.levelname, self.RESET)
        msg = super().format(record)
        return f"{color}{msg}{self.RESET}"


class LoggerManager:
    """Manages logger configuration and hands out component loggers."""

    def __init__(self):
        self._loggers: Dict[str, logging.Logger] = {}
        self._configured = False
        self._config: Optional[Dict[str, Any]] = None

    def configure(self, config: Dict[str, Any]) -> None:
        """Configure the package logger.

        Args:
            config: Logging configuration dictionary (the ``logging`` section)
        """
        self._config = dict(DEFAULT_LOGGING_CONFIG)
        self._config.update(config or {})
        self._configured = True
        self._configure_parent_logger()

    def _parent_name(self) -> str:
        return (self._config or {}).get("parent_logger") or PACKAGE_LOGGER

    def _configure_parent_logger(self) -> None:
        if not self._config:
            return

        parent_logger = logging.getLogger(self._parent_name())

        # Reconfiguring must not stack handlers
        parent_logger.handlers.clear()

        level_str = self._config.get("level", "INFO")
        parent_logger.setLevel(getattr(logging, str(level_str).upper(), logging.INFO))

        log_format = self._config.get("format", DEFAULT_LOGGING_CONFIG["format"])
        date_format = self._config.get("date_format", DEFAULT_LOGGING_CONFIG["date_format"])
        formatter = logging.Formatter(log_format, date_format)

        if self._config.get("enable_console", True):
            console_handler = logging.StreamHandler(sys.stdout)
            if sys.stdout.isatty():
                console_handler.setFormatter(ColorFormatter(log_format, date_format))
            else:
                console_handler.setFormatter(formatter)
            parent_logger.addHandler(console_handler)

        if self._config.get("enable_file", False):
            file_path = self._config.get("file_path")
            if file_path:
                file_handler = logging.handlers.RotatingFileHandler(
                    file_path,
                    maxBytes=self._config.get("max_file_size", 10485760),
                    backupCount=self._config.get("backup_count", 5),
                )
                file_handler.setFormatter(formatter)
                parent_logger.addHandler(file_handler)

        parent_logger.propagate = False

    def get_logger(self, name: str) -> logging.Logger:
        """Get or create a logger below the package (or configured parent) logger.

        Args:
            name: Component name, e.g. ``"core.controller"``

        Returns:
            Logger instance
        """
        if not self._configured:
            self.configure({})

        full_name = f"{self._parent_name()}.{name}"
        if full_name not in self._loggers:
            self._loggers[full_name] = logging.getLogger(full_name)
        return self._loggers[full_name]

    def set_level(self, level: str) -> None:
        """Change the level of the parent logger."""
        if self._config:
            self._config["level"] = level
            self._configure_parent_logger()


_logger_manager = LoggerManager()


def configure_logging(config: Dict[str, Any]) -> None:
    """Configure the logging system from the ``logging`` config section."""
    _logger_manager.configure(config)


def get_logger(name: str) -> logging.Logger:
    """Get a logger for a component.

    Example:
        logger = get_logger("sync.reconciler")
        logger.info("Reconciliation pass finished")
    """
    return _logger_manager.get_logger(name)


def set_log_level(level: str) -> None:
    """Change the logging level for the entire package.

    Args:
        level: New logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    _logger_manager.set_level(level)
