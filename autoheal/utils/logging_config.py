"""
Logging Setup
=============
Console (colored, stderr) + dated file logging for the API process.

    setup_logging(level)                 — console + logs/autoheal_YYYYMMDD.log
    setup_logging(level, to_file=False)  — console only (tests, one-off scripts)

Chatty client libraries (httpx request lines, docker/urllib3 connection
pool chatter) are capped at WARNING so resilience and self-heal logs stay
readable.
"""
import logging
import sys
import os
from datetime import datetime
from typing import Optional

from autoheal.core.config import LOG_DIR

_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d - %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"

_APP_LOGGERS = ("autoheal", "main", "uvicorn", "uvicorn.error", "uvicorn.access")
_NOISY_LOGGERS = ("httpx", "httpcore", "docker", "urllib3")


class ColoredFormatter(logging.Formatter):
    """Level-colored console output."""

    COLORS = {
        logging.DEBUG: "\x1b[36m",
        logging.INFO: "\x1b[32m",
        logging.WARNING: "\x1b[33m",
        logging.ERROR: "\x1b[31m",
        logging.CRITICAL: "\x1b[31;1m",
    }
    RESET = "\x1b[0m"

    def __init__(self):
        super().__init__(_FORMAT, datefmt=_DATEFMT)

    def format(self, record):
        message = super().format(record)
        color = self.COLORS.get(record.levelno)
        return f"{color}{message}{self.RESET}" if color else message


def log_file_path(log_dir: str = LOG_DIR, day: Optional[datetime] = None) -> str:
    return os.path.join(log_dir, f"autoheal_{(day or datetime.now()).strftime('%Y%m%d')}.log")


def setup_logging(level=logging.INFO, log_dir: str = LOG_DIR, to_file: bool = True) -> logging.Logger:
    """Install the console (and optionally file) handlers on the root logger."""
    root_logger = logging.getLogger()

    # Clear existing handlers to prevent duplicate logs
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    root_logger.setLevel(level)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(ColoredFormatter())
    root_logger.addHandler(console_handler)

    if to_file:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.FileHandler(log_file_path(log_dir), encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATEFMT))
        root_logger.addHandler(file_handler)

    for name in _APP_LOGGERS:
        named = logging.getLogger(name)
        named.setLevel(level)
        named.propagate = True
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    root_logger.info("Logging initialized (console%s)", " + file" if to_file else "")
    return root_logger
