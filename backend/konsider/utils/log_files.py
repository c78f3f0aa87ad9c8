"""JSON log files with hourly rotation and age-based cleanup."""

from __future__ import annotations

import json
import logging
import os
import socket
import threading
from datetime import datetime, timedelta, timezone
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Optional

LOG_FILE_NAME = "konsider.log"
ROTATED_SUFFIX_FORMAT = "%Y-%m-%d_%H"
CLEANUP_INTERVAL_SECONDS = 24 * 3600

_LOGGER = logging.getLogger("konsider.workers")


class JsonLineFormatter(logging.Formatter):
    """One JSON object per record, in the shape log shippers expect."""

    def __init__(self, name: str = "konsider"):
        super().__init__()
        self._name = name
        self._hostname = socket.gethostname()

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "name": self._name,
            "logger": record.name,
            "level": record.levelname,
            "msg": record.getMessage(),
            "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "hostname": self._hostname,
            "pid": os.getpid(),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True)


def configure_file_logging(log_dir: str, level: str = "INFO") -> TimedRotatingFileHandler:
    """Attach an hourly rotating JSON handler for the `konsider` loggers.

    Calling it again reuses the handler already attached instead of
    opening a second file.
    """
    logger = logging.getLogger("konsider")
    logger.setLevel(level)
    for existing in logger.handlers:
        if isinstance(existing, TimedRotatingFileHandler):
            return existing
    root = Path(log_dir).expanduser().resolve()
    root.mkdir(parents=True, exist_ok=True)
    handler = TimedRotatingFileHandler(root / LOG_FILE_NAME, when="H", utc=True, encoding="utf-8")
    handler.suffix = ROTATED_SUFFIX_FORMAT
    handler.setFormatter(JsonLineFormatter())
    logger.addHandler(handler)
    return handler


def _rotated_at(path: Path) -> Optional[datetime]:
    prefix = LOG_FILE_NAME + "."
    if not path.name.startswith(prefix):
        return None
    stamp = path.name[len(prefix):]
    try:
        return datetime.strptime(stamp, ROTATED_SUFFIX_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        _LOGGER.error("log_cleanup_bad_timestamp %s", path.name)
        return None


def cleanup_old_logs(log_dir, retention_days: int, now: Optional[datetime] = None) -> list[Path]:
    """Delete rotated log files older than `retention_days`.

    Only files named `konsider.log.YYYY-MM-DD_HH` are considered; the
    active `konsider.log` and unrelated files are never touched. Returns
    the deleted paths.
    """
    root = Path(log_dir)
    if not root.is_dir():
        return []
    now = now or datetime.now(timezone.utc)
    deleted = []
    for path in sorted(root.iterdir()):
        if not path.is_file():
            continue
        rotated_at = _rotated_at(path)
        if rotated_at is None:
            continue
        if now - rotated_at > timedelta(days=retention_days):
            _LOGGER.info("deleting old log file: %s", path)
            path.unlink(missing_ok=True)
            deleted.append(path)
    return deleted


class LogCleanupWorker:
    """Run `cleanup_old_logs` once a day on a daemon thread."""

    def __init__(self, log_dir: str, retention_days: int, interval_seconds: float = CLEANUP_INTERVAL_SECONDS):
        self._log_dir = log_dir
        self._retention_days = retention_days
        self._interval = interval_seconds
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                cleanup_old_logs(self._log_dir, self._retention_days)
            except OSError:
                _LOGGER.exception("log_cleanup_failed")
            self._stop.wait(self._interval)

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="log-cleanup-worker", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None
