"""
Logging utilities.

Plain module loggers come from logging.getLogger(__name__); refresh summaries
and other machine-read events go through StructuredLogger as JSON lines.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Union


def _json_default(value: Any) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


class StructuredLogger:
    """Structured logger writing one JSON object per record."""

    def __init__(self, name: str, level: int = logging.NOTSET):
        """
        Initialize structured logger.

        Args:
            name: Logger name
            level: Logging level; NOTSET defers to the parent logger
        """
        self.logger = logging.getLogger(name)
        if level != logging.NOTSET:
            self.logger.setLevel(level)

    def _log_structured(self, level: int, message: str, **kwargs):
        """
        Log a structured message.

        Args:
            level: Logging level
            message: Log message
            **kwargs: Additional structured data
        """
        if self.logger.isEnabledFor(level):
            log_data = {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "level": logging.getLevelName(level),
                "message": message,
                "logger": self.logger.name,
            }
            log_data.update(kwargs)
            self.logger.log(level, json.dumps(log_data, default=_json_default))

    def debug(self, message: str, **kwargs):
        self._log_structured(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs):
        self._log_structured(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._log_structured(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs):
        self._log_structured(logging.ERROR, message, **kwargs)


def configure_logging(level: Union[int, str] = logging.INFO) -> None:
    """Attach a stdout handler to the taskflow logger tree and set its level."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root = logging.getLogger("taskflow")
    root.setLevel(level)
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
        root.addHandler(handler)


def get_logger(name: str) -> StructuredLogger:
    """
    Get a structured logger.

    Args:
        name: Logger name

    Returns:
        StructuredLogger instance
    """
    return StructuredLogger(name)
