"""Structured logging helpers for the aidev orchestration layer."""

from __future__ import annotations

import logging
import logging.handlers
import os
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any

__all__ = [
    "LogBuffer",
    "LogEntry",
    "setup_logging",
    "get_logger",
    "get_log_buffer",
    "get_log_path",
]

_DEFAULT_LOG_DIR = Path.home() / ".aidev" / "logs"
_NOISY_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai")
_DEFAULT_BUFFER_CAPACITY = 1000
_CONFIGURED = False
_LOG_PATH: Path | None = None
_BUFFER: "LogBuffer | None" = None


@dataclass(slots=True, frozen=True)
class LogEntry:
    """One captured log record."""

    timestamp: str
    level: str
    message: str
    source: str | None = None
    data: Any = None


class LogBuffer(logging.Handler):
    """Bounded, append-only ring buffer of log entries.

    Call sites attach ``source`` and ``data`` through ``extra=`` so the
    entries stay structured::

        LOGGER.info("Completed", extra={"source": "LoggingMiddleware", "data": {...}})
    """

    def __init__(self, capacity: int = _DEFAULT_BUFFER_CAPACITY, level: int = logging.DEBUG) -> None:
        super().__init__(level)
        self._capacity = max(1, capacity)
        self._entries: deque[LogEntry] = deque(maxlen=self._capacity)
        self._entries_lock = Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entry = LogEntry(
                timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
                level=record.levelname,
                message=record.getMessage(),
                source=getattr(record, "source", None) or record.name,
                data=getattr(record, "data", None),
            )
        except Exception:
            self.handleError(record)
            return
        with self._entries_lock:
            self._entries.append(entry)

    def export(self, level: str | int | None = None) -> list[LogEntry]:
        """Return captured entries, optionally filtered to a single level."""

        with self._entries_lock:
            entries = list(self._entries)
        if level is None:
            return entries
        name = logging.getLevelName(level) if isinstance(level, int) else level.upper()
        return [entry for entry in entries if entry.level == name]

    def recent(self, count: int = 100) -> list[LogEntry]:
        with self._entries_lock:
            entries = list(self._entries)
        return entries[-count:] if count > 0 else []

    def clear(self) -> None:
        with self._entries_lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._entries_lock:
            return len(self._entries)


def setup_logging(
    level: int = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    buffer_capacity: int = _DEFAULT_BUFFER_CAPACITY,
    force: bool = False,
) -> Path:
    """Configure root logging with rotating file, ring buffer and optional console handlers."""

    global _CONFIGURED, _LOG_PATH, _BUFFER
    if _CONFIGURED and not force and _LOG_PATH is not None:
        return _LOG_PATH

    target_dir = _resolve_log_dir(log_dir)
    target_dir.mkdir(parents=True, exist_ok=True)
    log_path = target_dir / "aidev.log"

    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    handlers: list[logging.Handler] = []
    file_handler = logging.handlers.RotatingFileHandler(
        log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    handlers.append(file_handler)

    if console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    buffer = LogBuffer(capacity=buffer_capacity)
    handlers.append(buffer)

    logging.basicConfig(level=min(level, logging.DEBUG), handlers=handlers, force=True)
    logging.captureWarnings(True)
    _tune_external_loggers(level)

    _CONFIGURED = True
    _LOG_PATH = log_path
    _BUFFER = buffer
    return log_path


def get_logger(name: str) -> logging.Logger:
    """Return a module-specific logger."""

    return logging.getLogger(name)


def get_log_buffer() -> LogBuffer | None:
    """Return the process-wide ring buffer installed by :func:`setup_logging`."""

    return _BUFFER


def get_log_path() -> Path | None:
    """Return the currently configured log file if available."""

    return _LOG_PATH


def _resolve_log_dir(log_dir: Path | str | None) -> Path:
    env_override = os.environ.get("AIDEV_LOG_DIR")
    return Path(log_dir or env_override or _DEFAULT_LOG_DIR).expanduser()


def _tune_external_loggers(root_level: int) -> None:
    quiet_level = logging.WARNING if root_level < logging.WARNING else root_level
    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(quiet_level)
