"""
Change monitor for the bound root directory.

Watchdog only tells us that *something* changed somewhere under the root;
each notification triggers a full rescan that is diffed against the stored
snapshot. Writes performed by the apply pipeline are registered beforehand
with :meth:`ChangeMonitor.expect_changes` so they are not reported back as
external edits.
"""

from __future__ import annotations

import logging
import os
import queue
import threading
import time
import weakref
from contextlib import contextmanager
from typing import Callable, Iterable, Iterator, Optional

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from ..errors import WatcherInitError
from ..models import ChangeSet
from .snapshot import EXCLUDED_DIRS, compare_snapshots, take_snapshot

logger = logging.getLogger(__name__)

BACKUP_INFIX = ".backup-"

ChangeCallback = Callable[[ChangeSet], None]


class ChangeNotifier:
    """One OS-level watch handle for a directory subtree.

    Subclasses call the ``on_event`` callable they were built with whenever
    the subtree changes. Granularity is not guaranteed.
    """

    def start(self) -> None:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError


class _WatchdogAdapter(FileSystemEventHandler):
    """Forward watchdog events as a bare "something changed" signal."""

    def __init__(self, on_event: Callable[[], None]) -> None:
        self._on_event = on_event

    def on_any_event(self, event):
        if event.event_type in ("opened", "closed_no_write"):
            return
        self._on_event()


class WatchdogNotifier(ChangeNotifier):
    """Recursive watchdog observer scheduled on *root*."""

    def __init__(self, root: str, on_event: Callable[[], None], observer_cls=Observer) -> None:
        self._observer = observer_cls()
        self._observer.schedule(_WatchdogAdapter(on_event), root, recursive=True)

    def start(self) -> None:
        self._observer.start()

    def close(self) -> None:
        if self._observer.is_alive():
            self._observer.stop()
            self._observer.join(timeout=5)
        else:
            self._observer.unschedule_all()


NotifierFactory = Callable[[str, Callable[[], None]], ChangeNotifier]


def _release_notifier(notifier: ChangeNotifier, root: str) -> None:
    try:
        notifier.close()
    except Exception as exc:
        logger.warning("[Monitor] Error releasing watch on %s: %s", root, exc)
    else:
        logger.debug("[Monitor] Released watch on %s", root)


class ChangeMonitor:
    """
    Report added/removed/modified files under *root* to *callback*.

    Usage::

        with ChangeMonitor(root, on_change) as monitor:
            monitor.start()
            with monitor.expecting(paths_about_to_be_written):
                writer.apply(updates, root)

    Parameters
    ----------
    root:
        Directory to watch. A missing root leaves the monitor degraded:
        it exists, never fires and records the reason on ``init_error``.
    callback:
        Called with a non-empty :class:`ChangeSet` of absolute paths, on the
        notifier or debounce-timer thread.
    debounce_seconds:
        Quiet period used to coalesce bursts of notifications; 0 runs a
        detection cycle for every notification.
    settle_seconds:
        How long expected paths stay suppressed after their write window
        closes.
    excluded_dirs:
        Directory names skipped by the snapshot walk.
    notifier_factory:
        ``factory(root, on_event) -> ChangeNotifier``; defaults to
        :class:`WatchdogNotifier`.
    """

    def __init__(
        self,
        root: str,
        callback: ChangeCallback,
        debounce_seconds: float = 0.25,
        settle_seconds: float = 2.0,
        excluded_dirs: Optional[Iterable[str]] = None,
        notifier_factory: Optional[NotifierFactory] = None,
    ) -> None:
        self._root = os.path.realpath(root)
        self._callback = callback
        self._debounce = max(0.0, debounce_seconds)
        self._settle = max(0.0, settle_seconds)
        self._excluded = EXCLUDED_DIRS if excluded_dirs is None else frozenset(excluded_dirs)

        self._cycle_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._expected: dict[str, Optional[float]] = {}
        self._snapshot: dict[str, int] = {}
        self._timer: Optional[threading.Timer] = None
        self._running = False
        self._stopped = False
        self._notifier: Optional[ChangeNotifier] = None
        self._finalizer: Optional[weakref.finalize] = None
        self.init_error: Optional[WatcherInitError] = None

        if not os.path.isdir(self._root):
            self._degrade("directory does not exist")
            return

        self._snapshot = take_snapshot(self._root, self._excluded)
        weak_notify = weakref.WeakMethod(self._on_notification)

        def _on_event() -> None:
            notify = weak_notify()
            if notify is not None:
                notify()

        factory = notifier_factory or WatchdogNotifier
        try:
            notifier = factory(self._root, _on_event)
        except (OSError, RuntimeError) as exc:
            self._degrade(str(exc))
            return

        self._notifier = notifier
        # Holds only the notifier, so the handle is released even if this
        # object is garbage collected without stop() being called.
        self._finalizer = weakref.finalize(self, _release_notifier, notifier, self._root)
        logger.info("[Monitor] Tracking %d file(s) under %s", len(self._snapshot), self._root)

    def _degrade(self, reason: str) -> None:
        self.init_error = WatcherInitError(self._root, reason)
        logger.warning("[Monitor] %s; monitoring disabled", self.init_error.message,
                       extra={"context": {"root": self._root, "reason": reason}})

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def root(self) -> str:
        return self._root

    @property
    def is_degraded(self) -> bool:
        return self.init_error is not None

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Begin delivering notifications. Idempotent; no-op once stopped."""
        with self._state_lock:
            if self._running or self._stopped or self._notifier is None:
                return
            try:
                self._notifier.start()
            except (OSError, RuntimeError) as exc:
                self._degrade(str(exc))
                failed = True
            else:
                self._running = True
                failed = False
        if failed:
            self.stop()
            return
        logger.info("[Monitor] Watching %s", self._root)

    def stop(self) -> None:
        """Release the watch handle. Safe to call repeatedly from any thread."""
        with self._state_lock:
            if self._stopped:
                return
            self._stopped = True
            self._running = False
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            finalizer, self._finalizer = self._finalizer, None
            self._notifier = None
        # Outside the lock: closing joins the observer thread, which may be
        # waiting on that lock in _on_notification.
        if finalizer is not None:
            finalizer()
        logger.info("[Monitor] Stopped watching %s", self._root)

    close = stop

    def __enter__(self) -> "ChangeMonitor":
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()

    # ------------------------------------------------------------------
    # Expected writes
    # ------------------------------------------------------------------

    def _absolute(self, path: str) -> str:
        if os.path.isabs(path):
            return os.path.normpath(path)
        return os.path.normpath(os.path.join(self._root, *path.replace("\\", "/").split("/")))

    def expect_changes(self, paths: Iterable[str]) -> list[str]:
        """Suppress changes to *paths* (and their backups) until released.

        Relative paths are taken relative to the root. Returns the absolute
        paths registered, for :meth:`release_expected`.
        """
        registered = [self._absolute(p) for p in paths]
        with self._state_lock:
            for path in registered:
                self._expected[path] = None
        logger.debug("[Monitor] Expecting writes to %d path(s)", len(registered))
        return registered

    def release_expected(self, paths: Iterable[str]) -> None:
        """Close the write window; suppression ends after ``settle_seconds``."""
        deadline = time.monotonic() + self._settle
        with self._state_lock:
            for path in paths:
                path = self._absolute(path)
                if path in self._expected:
                    self._expected[path] = deadline

    @contextmanager
    def expecting(self, paths: Iterable[str]) -> Iterator[list[str]]:
        registered = self.expect_changes(paths)
        try:
            yield registered
        finally:
            self.release_expected(registered)

    def _filter_expected(self, changes: ChangeSet) -> ChangeSet:
        now = time.monotonic()
        with self._state_lock:
            for path, deadline in list(self._expected.items()):
                if deadline is not None and deadline <= now:
                    del self._expected[path]
            expected = list(self._expected)
        if not expected:
            return changes

        def _is_expected(path: str) -> bool:
            for target in expected:
                if path == target or path.startswith(target + BACKUP_INFIX):
                    return True
            return False

        def _keep(paths: frozenset[str]) -> frozenset[str]:
            return frozenset(p for p in paths if not _is_expected(p))

        filtered = ChangeSet(_keep(changes.added), _keep(changes.removed), _keep(changes.modified))
        dropped = len(changes.all_paths) - len(filtered.all_paths)
        if dropped:
            logger.debug("[Monitor] Ignored %d expected change(s)", dropped)
        return filtered

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def _on_notification(self) -> None:
        with self._state_lock:
            if not self._running:
                return
            if self._debounce <= 0:
                timer = None
            else:
                if self._timer is not None:
                    self._timer.cancel()
                timer = self._timer = threading.Timer(self._debounce, self._debounced_cycle)
                timer.daemon = True
        if timer is None:
            self._run_cycle()
        else:
            timer.start()

    def _debounced_cycle(self) -> None:
        with self._state_lock:
            self._timer = None
            if not self._running:
                return
        self._run_cycle()

    def check_now(self) -> ChangeSet:
        """Run one detection cycle on the calling thread."""
        if self.is_degraded:
            return ChangeSet()
        return self._run_cycle()

    def _run_cycle(self) -> ChangeSet:
        with self._cycle_lock:
            fresh = take_snapshot(self._root, self._excluded)
            changes = self._filter_expected(compare_snapshots(self._snapshot, fresh))
            if changes:
                logger.info("[Monitor] %d added, %d removed, %d modified",
                            len(changes.added), len(changes.removed), len(changes.modified),
                            extra={"context": {"root": self._root}})
                try:
                    self._callback(changes)
                except Exception as exc:
                    logger.error("[Monitor] Change callback failed: %s", exc, exc_info=True)
            self._snapshot = fresh
        return changes


class ChangeQueue:
    """Thread-safe hand-off from the monitor thread to a consumer.

    Pass an instance as the monitor callback, then ``get()`` or ``drain()``
    from the consuming thread.
    """

    def __init__(self) -> None:
        self._queue: "queue.Queue[ChangeSet]" = queue.Queue()

    def __call__(self, changes: ChangeSet) -> None:
        self._queue.put(changes)

    def get(self, timeout: Optional[float] = None) -> Optional[ChangeSet]:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> ChangeSet:
        """Merge everything pending into one ChangeSet (empty if nothing)."""
        added: set[str] = set()
        removed: set[str] = set()
        modified: set[str] = set()
        while True:
            try:
                changes = self._queue.get_nowait()
            except queue.Empty:
                break
            added |= changes.added
            removed |= changes.removed
            modified |= changes.modified
        return ChangeSet(frozenset(added), frozenset(removed), frozenset(modified))

    def empty(self) -> bool:
        return self._queue.empty()
