"""Logging for the lrbridge process.

Three threads log concurrently (main, the lr-ipc-timer supervisor and the
lr-ipc-in reader), so every line carries the thread name next to the module.
"""
import logging
import os
import sys
import threading
from typing import Optional


# Guards handler attachment; reader, timer and main threads all call get_logger
_logger_init_lock = threading.Lock()

LOG_LEVEL_ENV = "LRBRIDGE_LOG_LEVEL"
PACKAGE = "lrbridge"

THREAD_WIDTH = 12
MODULE_WIDTH = 10


class BridgeFormatter(logging.Formatter):
    """[{level[0]} {time} {thread} {module}] {message}

    Example: [I 14:23:45.123 lr-ipc-timer connection] Connected to host at 127.0.0.1:58764
    """

    def format(self, record):
        thread = record.threadName[:THREAD_WIDTH].ljust(THREAD_WIDTH)
        module = record.name.rsplit('.', 1)[-1][:MODULE_WIDTH].ljust(MODULE_WIDTH)
        clock = f"{self.formatTime(record, '%H:%M:%S')}.{int(record.msecs):03d}"

        text = f"[{record.levelname[0]} {clock} {thread} {module}] {record.getMessage()}"
        if record.exc_info:
            text = f"{text}\n{self.formatException(record.exc_info)}"
        return text


def _level_number(level: Optional[str]) -> int:
    if level is None:
        level = os.getenv(LOG_LEVEL_ENV, "INFO")
    return getattr(logging, level.upper(), logging.INFO)


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """Return the logger for a bridge module, attaching the stdout handler once.

    Level is the argument if given, else LRBRIDGE_LOG_LEVEL, else INFO.
    Unknown level names fall back to INFO.
    """
    logger = logging.getLogger(name)
    logger.setLevel(_level_number(level))

    with _logger_init_lock:
        if not logger.handlers:
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(BridgeFormatter())
            logger.addHandler(handler)

    return logger


def set_package_level(level: str) -> None:
    """Apply level to every lrbridge logger created so far."""
    number = _level_number(level)
    for name in list(logging.Logger.manager.loggerDict):
        if name == PACKAGE or name.startswith(PACKAGE + "."):
            logging.getLogger(name).setLevel(number)
