"""
Structured logging for Gallery Uploader.
Provides console and JSON file logging with rotation, plus an in-memory
activity log that the presentation layer reads.
"""

import logging
import sys
import threading
from collections import deque
from pathlib import Path
from logging.handlers import TimedRotatingFileHandler
from pythonjsonlogger import jsonlogger
from typing import List, Optional

ROOT_LOGGER_NAME = "gallery_uploader"


class GalleryUploaderFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with additional fields."""

    def add_fields(self, log_record, record, message_dict):
        """Add custom fields to log records."""
        super().add_fields(log_record, record, message_dict)

        if not log_record.get('timestamp'):
            log_record['timestamp'] = self.formatTime(record, self.datefmt)

        if log_record.get('level'):
            log_record['level'] = log_record['level'].upper()
        else:
            log_record['level'] = record.levelname

        log_record['component'] = 'gallery-uploader'


class ActivityLog(logging.Handler):
    """Keeps the most recent log lines for operator display.

    The desktop front end polls this instead of reading log files.
    """

    def __init__(self, capacity: int = 500, level: int = logging.INFO):
        super().__init__(level=level)
        self._messages: deque = deque(maxlen=capacity)
        self._unread = 0
        self._messages_lock = threading.Lock()
        self.setFormatter(logging.Formatter(
            fmt='%(asctime)s | %(levelname)-8s | %(message)s',
            datefmt='%H:%M:%S'
        ))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = self.format(record)
        except Exception:
            self.handleError(record)
            return

        with self._messages_lock:
            self._messages.append(line)
            self._unread = min(self._unread + 1, self._messages.maxlen)

    def messages(self) -> List[str]:
        """Return all retained lines, oldest first."""
        with self._messages_lock:
            return list(self._messages)

    def drain_new(self) -> List[str]:
        """Return lines appended since the previous call."""
        with self._messages_lock:
            if self._unread == 0:
                return []
            new = list(self._messages)[-self._unread:]
            self._unread = 0
            return new

    def clear(self) -> None:
        with self._messages_lock:
            self._messages.clear()
            self._unread = 0


def setup_logger(
    name: str = ROOT_LOGGER_NAME,
    log_dir: Optional[Path] = None,
    log_level: str = "INFO",
    console: bool = True,
    json_logs: bool = True,
    retention_days: int = 7
) -> logging.Logger:
    """Setup logger with file and console handlers.

    Args:
        name: Logger name
        log_dir: Directory for log files
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        console: Enable console logging
        json_logs: Use JSON format for file logs
        retention_days: Number of daily log files to keep

    Returns:
        Configured logger
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, log_level.upper()))

    # Keep attached activity logs, they belong to running sessions
    logger.handlers = [h for h in logger.handlers if isinstance(h, ActivityLog)]

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(getattr(logging, log_level.upper()))
        console_handler.setFormatter(logging.Formatter(
            fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        logger.addHandler(console_handler)

    if log_dir:
        log_dir = Path(log_dir).expanduser()
        log_dir.mkdir(parents=True, exist_ok=True)

        file_handler = TimedRotatingFileHandler(
            filename=log_dir / "gallery-uploader.log",
            when='midnight',
            interval=1,
            backupCount=retention_days,
            encoding='utf-8'
        )
        file_handler.setLevel(getattr(logging, log_level.upper()))

        if json_logs:
            file_handler.setFormatter(GalleryUploaderFormatter(
                fmt='%(timestamp)s %(level)s %(name)s %(message)s'
            ))
        else:
            file_handler.setFormatter(logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            ))

        logger.addHandler(file_handler)

    return logger


def get_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """Get or create logger for a module.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


def attach_activity_log(
    activity_log: ActivityLog,
    name: str = ROOT_LOGGER_NAME
) -> ActivityLog:
    """Route package log records into an activity log."""
    logger = logging.getLogger(name)
    if activity_log not in logger.handlers:
        logger.addHandler(activity_log)
    if logger.level == logging.NOTSET or logger.level > activity_log.level:
        logger.setLevel(activity_log.level)
    return activity_log


def detach_activity_log(activity_log: ActivityLog, name: str = ROOT_LOGGER_NAME) -> None:
    logging.getLogger(name).removeHandler(activity_log)
