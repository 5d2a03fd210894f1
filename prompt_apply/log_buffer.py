"""
Structured log events and a bounded in-memory buffer for them.

Every module logs through ``logging.getLogger(__name__)``; :func:`setup_logger`
attaches a file handler for the full trace and a :class:`BufferHandler`
that turns records into :class:`LogEvent` objects for whatever sink the
host application provides (console pane, status bar, ...).
"""

from __future__ import annotations

import logging
import os
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

TRIM_MARKER = "[... earlier logs trimmed ...]"


@dataclass(frozen=True)
class LogEvent:
    level: str
    message: str
    context: dict = field(default_factory=dict)
    created: float = field(default_factory=time.time)

    def format(self) -> str:
        stamp = datetime.fromtimestamp(self.created).strftime("%H:%M:%S")
        return f"{stamp} [{self.level}] {self.message}"


class LogBuffer:
    """Thread-safe ring of log events with explicit size limits.

    ``max_lines`` caps the number of events (oldest evicted first).
    ``max_chars`` caps the total message length: when exceeded, the oldest
    events are dropped until the buffer is at 75% of the limit and a
    trim-marker event is inserted at the front.
    """

    def __init__(self, max_lines: int = 5_000, max_chars: int = 500_000) -> None:
        self._max_lines = max(1, max_lines)
        self._max_chars = max(1, max_chars)
        self._events: deque[LogEvent] = deque(maxlen=self._max_lines)
        self._chars = 0
        self._lock = threading.Lock()
        self._subscribers: list[Callable[[LogEvent], None]] = []
        self.trimmed_count = 0

    def append(self, event: LogEvent) -> None:
        with self._lock:
            if len(self._events) == self._max_lines:
                evicted = self._events[0]
                self._chars -= len(evicted.message)
                self.trimmed_count += 1
            self._events.append(event)
            self._chars += len(event.message)
            if self._chars > self._max_chars:
                self._trim_locked()
            subscribers = list(self._subscribers)
        for callback in subscribers:
            callback(event)

    def _trim_locked(self) -> None:
        """Drop oldest events to 75% of max_chars, leaving room for the marker."""
        target = (self._max_chars * 3) // 4
        room = len(TRIM_MARKER) if len(TRIM_MARKER) <= target else 0
        while self._events and self._chars + room > target:
            dropped = self._events.popleft()
            self._chars -= len(dropped.message)
            if dropped.message != TRIM_MARKER:
                self.trimmed_count += 1
        if not room:
            return
        if len(self._events) == self._max_lines:
            dropped = self._events.popleft()
            self._chars -= len(dropped.message)
            self.trimmed_count += 1
        self._events.appendleft(LogEvent("INFO", TRIM_MARKER))
        self._chars += room

    def subscribe(self, callback: Callable[[LogEvent], None]) -> Callable[[], None]:
        """Register *callback* for every new event; returns an unsubscribe function."""
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    def events(self) -> list[LogEvent]:
        with self._lock:
            return list(self._events)

    def text(self) -> str:
        return "\n".join(e.format() for e in self.events())

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
            self._chars = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    @property
    def char_count(self) -> int:
        with self._lock:
            return self._chars


class BufferHandler(logging.Handler):
    """Logging handler that feeds a :class:`LogBuffer`.

    Structured context is taken from ``extra={"context": {...}}``.
    """

    def __init__(self, buffer: LogBuffer, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.buffer = buffer

    def emit(self, record: logging.LogRecord) -> None:
        try:
            context = getattr(record, "context", None)
            event = LogEvent(
                level=record.levelname,
                message=record.getMessage(),
                context=dict(context) if isinstance(context, dict) else {},
                created=record.created,
            )
            self.buffer.append(event)
        except Exception:
            self.handleError(record)


def setup_logger(log_dir: Optional[str] = ".promptapply/logs",
                 buffer: Optional[LogBuffer] = None) -> LogBuffer:
    """Configure the ``prompt_apply`` logger and return its event buffer.

    With a *log_dir*, a DEBUG file handler captures everything; the buffer
    receives INFO and above.
    """
    logger = logging.getLogger("prompt_apply")
    logger.setLevel(logging.DEBUG)
    if buffer is None:
        buffer = LogBuffer()

    # Calling again replaces the handlers added last time.
    for handler in list(logger.handlers):
        if isinstance(handler, BufferHandler) or getattr(handler, "_promptapply_file", False):
            logger.removeHandler(handler)
            handler.close()
    logger.addHandler(BufferHandler(buffer))

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_file = os.path.join(log_dir, f"promptapply_{timestamp}.log")
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(logging.DEBUG)
        fh._promptapply_file = True
        fh.setFormatter(logging.Formatter(
            "%(asctime)s [%(levelname)s] %(message)s", datefmt="%H:%M:%S"
        ))
        logger.addHandler(fh)

    return buffer
