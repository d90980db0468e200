"""Centralized logging helpers.

Provides one place to configure the root logger and small utilities used by
every module to emit structured DEBUG events without leaking credentials.
"""
from __future__ import annotations

import logging
import os
import re
import time
from typing import Any, Dict, Optional
from urllib.parse import urlsplit, urlunsplit

from constants import Constants

LOG_LEVEL_ENV = "LOCKWRIGHT_LOG_LEVEL"

_SECRET_PATTERN = re.compile(r"(?i)(token|password|secret|api[_-]?key)=([^&\s]+)")


def configure_logging(level: Optional[str] = None, logfile: Optional[str] = None) -> None:
    """Configure the root logger once.

    Level precedence: explicit argument, then LOCKWRIGHT_LOG_LEVEL, then INFO.
    """
    name = (level or os.environ.get(LOG_LEVEL_ENV) or "INFO").upper()
    value = getattr(logging, name, logging.INFO)
    handlers = [logging.StreamHandler()]
    if logfile:
        handlers.append(logging.FileHandler(logfile, encoding="utf-8"))
    logging.basicConfig(level=value, format=Constants.LOG_FORMAT, handlers=handlers, force=True)


def is_debug_enabled(logger: logging.Logger) -> bool:
    """Return True when DEBUG records from this logger would be emitted."""
    return logger.isEnabledFor(logging.DEBUG)


def extra_context(**fields: Any) -> Dict[str, Any]:
    """Build an ``extra`` mapping for structured log records.

    None values are dropped so handlers only see populated fields.
    """
    return {k: v for k, v in fields.items() if v is not None}


def redact(text: str) -> str:
    """Mask secret-looking query parameters in free text."""
    if not text:
        return text
    return _SECRET_PATTERN.sub(lambda m: f"{m.group(1)}=***", text)


def safe_url(url: str) -> str:
    """Return the URL with userinfo and secret query values removed."""
    if not url:
        return url
    try:
        parts = urlsplit(url)
    except ValueError:
        return redact(url)
    netloc = parts.netloc
    if "@" in netloc:
        netloc = "***@" + netloc.rsplit("@", 1)[1]
    return urlunsplit((parts.scheme, netloc, parts.path, redact(parts.query), ""))


class Timer:
    """Context manager measuring wall time in milliseconds."""

    def __init__(self) -> None:
        self._start = 0.0
        self._end: Optional[float] = None

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        self._end = None
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self._end = time.perf_counter()

    def duration_ms(self) -> int:
        end = self._end if self._end is not None else time.perf_counter()
        return int((end - self._start) * 1000)
