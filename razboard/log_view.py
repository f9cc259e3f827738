"""A logging handler that renders colour-marked lines and flushes them in batches."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime
from typing import Any

_LEVEL_NAMES = {
    logging.DEBUG: "DEBUG",
    logging.INFO: "INFO",
    logging.WARNING: "WARN",
    logging.ERROR: "ERROR",
}

_LEVEL_COLORS = {
    logging.DEBUG: "gray",
    logging.INFO: "green",
    logging.WARNING: "yellow",
    logging.ERROR: "red",
}

_STANDARD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime"}

Attrs = Mapping[str, Any] | Iterable[tuple[str, Any]]


def level_name(levelno: int) -> str:
    return _LEVEL_NAMES.get(levelno) or logging.getLevelName(levelno)


def format_log_line(timestamp: datetime, levelno: int, message: str, attrs: Attrs = ()) -> str:
    """One marked-up log line, newline-terminated."""
    color = _LEVEL_COLORS.get(levelno, "white")
    line = (
        f"[darkgray]{timestamp.strftime('%H:%M:%S')}[-] "
        f"[{color}] {level_name(levelno)} [-] {message}"
    )
    pairs = list(attrs.items() if isinstance(attrs, Mapping) else attrs)
    if pairs:
        line += " [darkgray]|[-] " + ", ".join(f"[cyan]{key}[-]={value}" for key, value in pairs)
    return line + "\n"


class BufferedLogHandler(logging.Handler):
    """Buffers formatted lines and hands them to ``sink`` in chunks.

    The buffer is flushed every ``flush_interval`` seconds (no background
    flushing when it is None), whenever it reaches ``max_buffer_len``
    characters, and on close. Extra record fields appear as attributes.
    """

    def __init__(
        self,
        sink: Callable[[str], None],
        flush_interval: float | None = 0.1,
        max_buffer_len: int = 8192,
        attrs: Attrs = (),
        level: int = logging.NOTSET,
    ) -> None:
        super().__init__(level)
        self._sink = sink
        self._max_buffer_len = max_buffer_len
        self._attrs = list(attrs.items() if isinstance(attrs, Mapping) else attrs)
        self._buffer_lock = threading.Lock()
        self._parts: list[str] = []
        self._length = 0
        self._stop = threading.Event()
        self._closed = False
        self._flusher: threading.Thread | None = None
        if flush_interval is not None:
            self._flusher = threading.Thread(
                target=self._periodic_flush, args=(flush_interval,), daemon=True
            )
            self._flusher.start()

    def _periodic_flush(self, interval: float) -> None:
        while not self._stop.wait(interval):
            self.flush()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            extras = [
                (key, value)
                for key, value in record.__dict__.items()
                if key not in _STANDARD_ATTRS
            ]
            line = format_log_line(
                datetime.fromtimestamp(record.created),
                record.levelno,
                record.getMessage(),
                self._attrs + extras,
            )
        except Exception:
            self.handleError(record)
            return
        with self._buffer_lock:
            self._parts.append(line)
            self._length += len(line)
            should_flush = self._length >= self._max_buffer_len
        if should_flush:
            self.flush()

    def flush(self) -> None:
        with self._buffer_lock:
            if not self._parts:
                return
            content = "".join(self._parts)
            self._parts.clear()
            self._length = 0
        self._sink(content)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._stop.set()
            if self._flusher is not None and self._flusher is not threading.current_thread():
                self._flusher.join()
            self.flush()
        super().close()