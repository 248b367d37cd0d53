"""Rotating file logger used by the transaction manager."""

from __future__ import annotations

import copy
import gzip
import logging
import os
import shutil
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path

LEVELS: dict[str, int] = {
    "": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
}

_SECONDS_PER_DAY = 24 * 60 * 60
_BYTES_PER_MB = 1024 * 1024


@dataclass(frozen=True)
class LogOptions:
    """Settings for a rotating log file."""

    log_name: str = "app"
    log_level: str = "info"
    file_name: str = "app.log"
    max_age: int = 10  # days a rotated file is kept
    max_size: int = 100  # megabytes before rotation
    max_backups: int = 3
    compress: bool = True


class _Formatter(logging.Formatter):
    _LEVEL_NAMES = {"WARNING": "WARN", "CRITICAL": "FATAL"}

    def __init__(self) -> None:
        super().__init__("%(asctime)s\t%(levelname)s\t%(filename)s:%(lineno)d\t%(message)s")

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        stamp = datetime.fromtimestamp(record.created).astimezone()
        return stamp.isoformat(timespec="milliseconds")

    def format(self, record: logging.LogRecord) -> str:
        record = copy.copy(record)
        record.levelname = self._LEVEL_NAMES.get(record.levelname, record.levelname)
        return super().format(record)


def _gzip_rotate(source: str, dest: str) -> None:
    with open(source, "rb") as src, gzip.open(dest, "wb") as dst:
        shutil.copyfileobj(src, dst)
    os.remove(source)


class _RotatingHandler(RotatingFileHandler):
    def __init__(self, options: LogOptions) -> None:
        super().__init__(
            options.file_name,
            maxBytes=max(options.max_size, 0) * _BYTES_PER_MB,
            backupCount=max(options.max_backups, 0),
            encoding="utf-8",
            delay=True,
        )
        self._max_age = options.max_age
        if options.compress:
            self.namer = lambda name: name + ".gz"
            self.rotator = _gzip_rotate

    def doRollover(self) -> None:
        super().doRollover()
        self._prune()

    def _prune(self) -> None:
        if self._max_age <= 0:
            return
        cutoff = time.time() - self._max_age * _SECONDS_PER_DAY
        base = Path(self.baseFilename)
        for path in base.parent.glob(base.name + ".*"):
            try:
                if path.stat().st_mtime < cutoff:
                    path.unlink()
            except OSError:
                pass


def new_logger(options: LogOptions | None = None) -> logging.Logger:
    """Build a logger that writes to a rotating file described by ``options``."""
    options = options or LogOptions()
    logger = logging.Logger(options.log_name, level=LEVELS.get(options.log_level, logging.INFO))
    handler = _RotatingHandler(options)
    handler.setFormatter(_Formatter())
    logger.addHandler(handler)
    logger.propagate = False
    return logger


_default_logger: logging.Logger | None = None
_default_lock = threading.Lock()


def get_default_logger() -> logging.Logger:
    """Return the shared logger built from the default options."""
    global _default_logger
    with _default_lock:
        if _default_logger is None:
            _default_logger = new_logger(LogOptions())
        return _default_logger


def debugf(fmt: str, *args: object) -> None:
    get_default_logger().debug(fmt, *args, stacklevel=2)


def infof(fmt: str, *args: object) -> None:
    get_default_logger().info(fmt, *args, stacklevel=2)


def warnf(fmt: str, *args: object) -> None:
    get_default_logger().warning(fmt, *args, stacklevel=2)


def errorf(fmt: str, *args: object) -> None:
    get_default_logger().error(fmt, *args, stacklevel=2)


def fatalf(fmt: str, *args: object) -> None:
    """Log at error level; the process keeps running."""
    get_default_logger().error(fmt, *args, stacklevel=2)