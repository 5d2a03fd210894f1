"""
Apply session: wires the parser, diff engine, writer and monitor to one
root directory and one configuration.
"""

from __future__ import annotations

import logging
import os
import threading
from typing import Optional

from .config import Config
from .editing.file_writer import ProgressCallback, SafeFileWriter
from .editing.line_diff import DiffEngine
from .editing.response_parser import ResponseParser
from .errors import PromptApplyError
from .models import BatchResult, FileUpdate
from .monitor.change_monitor import ChangeCallback, ChangeMonitor, NotifierFactory
from .paths import split_relative_path
from .preview import FilePreview, compute_previews
from .reader import RootFileReader

logger = logging.getLogger(__name__)


class ApplySession:
    """
    Everything needed to go from model output to files on disk for one root.

    Usage::

        with ApplySession("/path/to/project") as session:
            session.watch(on_external_change)
            updates = session.parse(response_text)
            previews = session.preview(updates)
            result = session.apply([p.update for p in previews if p.has_changes])

    While watching, :meth:`apply` registers its destinations with the
    monitor first, so the session's own writes are not reported as
    external changes.
    """

    def __init__(self, root: str, config: Optional[Config] = None,
                 notifier_factory: Optional[NotifierFactory] = None) -> None:
        self.config = config or Config.load()
        self.root = os.path.realpath(root)
        self.parser = ResponseParser()
        self.engine = DiffEngine(self.config.DIFF_MAX_LINES, self.config.DIFF_MAX_EDIT_DISTANCE)
        self.reader = RootFileReader(self.root, self.config.MAX_FILE_SIZE)
        self.writer = SafeFileWriter(
            max_workers=self.config.WRITE_WORKERS,
            backup=self.config.BACKUP_ENABLED,
            fallback_dir=self.config.FALLBACK_DIR,
        )
        self._notifier_factory = notifier_factory
        self._monitor: Optional[ChangeMonitor] = None
        self._lock = threading.Lock()

    @property
    def monitor(self) -> Optional[ChangeMonitor]:
        return self._monitor

    def parse(self, text) -> list[FileUpdate]:
        return self.parser.parse(text)

    def preview(self, updates: list[FileUpdate]) -> list[FilePreview]:
        return compute_previews(updates, self.reader, self.engine, self.config.DIFF_WORKERS)

    def apply(self, updates: list[FileUpdate],
              cancel_event: Optional[threading.Event] = None,
              progress: Optional[ProgressCallback] = None) -> BatchResult:
        monitor = self._monitor
        if monitor is None or monitor.is_degraded:
            return self.writer.apply(updates, self.root, cancel_event, progress)

        expected = []
        for update in updates:
            try:
                expected.append("/".join(split_relative_path(update.path)))
            except PromptApplyError:
                continue  # rejected again by the writer
        with monitor.expecting(expected):
            return self.writer.apply(updates, self.root, cancel_event, progress)

    def watch(self, callback: ChangeCallback) -> ChangeMonitor:
        """Start (or restart) monitoring the root, delivering to *callback*."""
        with self._lock:
            if self._monitor is not None:
                self._monitor.stop()
            self._monitor = ChangeMonitor(
                self.root,
                callback,
                debounce_seconds=self.config.WATCH_DEBOUNCE_SECONDS,
                settle_seconds=self.config.WATCH_SETTLE_SECONDS,
                excluded_dirs=self.config.EXCLUDED_DIRS,
                notifier_factory=self._notifier_factory,
            )
            self._monitor.start()
            return self._monitor

    def close(self) -> None:
        with self._lock:
            if self._monitor is not None:
                self._monitor.stop()
                self._monitor = None

    def __enter__(self) -> "ApplySession":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
