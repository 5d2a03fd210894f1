"""
Safe file writer: applies approved updates under a root directory with
path validation, byte-exact backups and atomic writes.

One failing update never aborts the batch; each failure is reported per
path in the :class:`~prompt_apply.models.BatchResult`. There is no
cross-file rollback: files already committed stay committed.
"""

from __future__ import annotations

import itertools
import logging
import os
import shutil
import threading
import time
import weakref
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

from ..errors import (
    BackupFailed,
    FileNotFound,
    FileWriteError,
    PathTraversalAttempt,
    PromptApplyError,
    from_os_error,
)
from ..models import BatchResult, FileUpdate, Operation
from ..paths import ensure_within_root, split_relative_path

logger = logging.getLogger(__name__)

BACKUP_INFIX = ".backup-"
_TMP_PREFIX = ".promptapply_tmp_"

ProgressCallback = Callable[[str, Optional[PromptApplyError]], None]


def _create_temp(directory: str) -> tuple[int, str]:
    """Create an exclusive temp file in *directory* with mode ``0o666 & ~umask``."""
    flags = os.O_WRONLY | os.O_CREAT | os.O_EXCL | getattr(os, "O_BINARY", 0)
    for _ in range(100):
        path = os.path.join(directory, f"{_TMP_PREFIX}{os.urandom(6).hex()}")
        try:
            return os.open(path, flags, 0o666), path
        except FileExistsError:
            continue
    raise FileExistsError(f"no free temporary file name in {directory}")


class SafeFileWriter:
    """Write :class:`FileUpdate` batches under a root directory.

    Parameters
    ----------
    max_workers:
        Size of the worker pool. Updates that target the same file are
        grouped and written sequentially in input order.
    backup:
        Copy existing content to ``<name>.backup-<token>`` before
        overwriting or deleting it.
    fallback_dir:
        When set, content that cannot be written under the root because of
        an OS error is saved here instead and reported in
        ``BatchResult.fallbacks``.
    """

    def __init__(self, max_workers: int = 4, backup: bool = True,
                 fallback_dir: Optional[str] = None) -> None:
        self._max_workers = max(1, max_workers)
        self._backup = backup
        self._fallback_dir = fallback_dir
        self._counter = itertools.count(1)
        self._counter_lock = threading.Lock()
        # Entries vanish once no thread holds the lock.
        self._path_locks: weakref.WeakValueDictionary[str, threading.Lock] = \
            weakref.WeakValueDictionary()
        self._path_locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Batch API
    # ------------------------------------------------------------------

    def apply(self, updates: list[FileUpdate], root: str,
              cancel_event: Optional[threading.Event] = None,
              progress: Optional[ProgressCallback] = None) -> BatchResult:
        """Apply *updates* under *root* and report per-path outcomes.

        ``cancel_event`` is checked between items; updates that never
        started are listed in ``BatchResult.skipped``.
        """
        result = BatchResult()
        if not updates:
            return result
        real_root = os.path.realpath(root)
        if not os.path.isdir(real_root):
            for update in updates:
                error = FileNotFound(root)
                result.failed.append((update.path, error))
                self._notify(progress, update.path, error)
            logger.error("[Writer] Root does not exist: %s", root)
            return result

        # Group by destination key so one path never has two writes in flight.
        groups: dict[str, list[tuple[int, FileUpdate]]] = {}
        for index, update in enumerate(updates):
            groups.setdefault(self._group_key(update.path), []).append((index, update))

        outcomes: dict[int, tuple[str, str, object]] = {}
        outcomes_lock = threading.Lock()

        def _run_group(items: list[tuple[int, FileUpdate]]) -> None:
            for index, update in items:
                if cancel_event is not None and cancel_event.is_set():
                    outcome = ("skipped", update.path, None)
                else:
                    try:
                        outcome = self._apply_one(update, real_root)
                    except Exception as exc:
                        logger.exception("[Writer] Unexpected error writing %s", update.path)
                        outcome = ("failed", update.path, FileWriteError(update.path, exc))
                with outcomes_lock:
                    outcomes[index] = outcome
                if outcome[0] != "skipped":
                    self._notify(progress, update.path,
                                 outcome[2] if outcome[0] == "failed" else None)

        workers = min(self._max_workers, len(groups))
        with ThreadPoolExecutor(max_workers=workers,
                                thread_name_prefix="promptapply-write") as pool:
            futures = [pool.submit(_run_group, items) for items in groups.values()]
            for future in futures:
                future.result()

        for index in sorted(outcomes):
            status, path, payload = outcomes[index]
            if status == "ok":
                result.succeeded.append(path)
                backup_path = payload
                if backup_path:
                    result.backups[path] = backup_path
            elif status == "skipped":
                result.skipped.append(path)
            else:
                error = payload
                result.failed.append((path, error))
                if error.fallback_path:
                    result.fallbacks[path] = error.fallback_path

        logger.info("[Writer] Batch finished: %s", result.summary(),
                    extra={"context": {"root": real_root,
                                       "succeeded": len(result.succeeded),
                                       "failed": len(result.failed),
                                       "skipped": len(result.skipped)}})
        return result

    @staticmethod
    def _notify(progress: Optional[ProgressCallback], path: str,
                error: Optional[PromptApplyError]) -> None:
        if progress is not None:
            progress(path, error)

    @staticmethod
    def _group_key(path: str) -> str:
        try:
            return "/".join(split_relative_path(path))
        except PromptApplyError:
            return path

    # ------------------------------------------------------------------
    # Single update
    # ------------------------------------------------------------------

    def _apply_one(self, update: FileUpdate, real_root: str) -> tuple[str, str, object]:
        try:
            components = split_relative_path(update.path)
        except PromptApplyError as exc:
            self._log_failure(update, exc)
            return ("failed", update.path, exc)

        destination = os.path.join(real_root, *components)
        with self._lock_for(destination):
            try:
                backup_path = self._write_validated(update, real_root, destination)
            except PromptApplyError as exc:
                self._log_failure(update, exc)
                return ("failed", update.path, exc)
            except OSError as exc:
                error = from_os_error(exc, update.path)
                self._log_failure(update, error)
                if update.operation is not Operation.DELETE:
                    self._save_to_fallback(update, error)
                return ("failed", update.path, error)
            except UnicodeError as exc:
                error = FileWriteError(update.path, exc)
                self._log_failure(update, error)
                return ("failed", update.path, error)

        logger.info("[Writer] %s: %s", update.operation.value.capitalize(), update.path,
                    extra={"context": {"path": update.path, "backup": backup_path}})
        return ("ok", update.path, backup_path)

    def _write_validated(self, update: FileUpdate, real_root: str,
                         destination: str) -> Optional[str]:
        """Validate, back up and write one update; returns the backup path if any."""
        # Check before creating anything, then again once directories exist.
        ensure_within_root(real_root, destination, update.path)
        parent = os.path.dirname(destination)

        if update.operation is Operation.DELETE:
            if not os.path.isfile(destination):
                raise FileNotFound(update.path)
            ensure_within_root(real_root, destination, update.path)
            backup_path = self._make_backup(destination, update.path) if self._backup else None
            os.unlink(destination)
            return backup_path

        # Encode first so unencodable content fails before anything is touched.
        data = update.content.encode("utf-8")
        os.makedirs(parent, exist_ok=True)
        ensure_within_root(real_root, destination, update.path)
        if os.path.isdir(destination):
            raise IsADirectoryError(f"{update.path} is a directory")

        backup_path = None
        if self._backup and os.path.isfile(destination):
            backup_path = self._make_backup(destination, update.path)
        self._atomic_write(destination, data)
        return backup_path

    def _lock_for(self, destination: str) -> threading.Lock:
        with self._path_locks_guard:
            lock = self._path_locks.get(destination)
            if lock is None:
                lock = self._path_locks[destination] = threading.Lock()
            return lock

    @staticmethod
    def _log_failure(update: FileUpdate, error: PromptApplyError) -> None:
        log = logger.error if isinstance(error, PathTraversalAttempt) else logger.warning
        log("[Writer] Could not write %s: %s", update.path, error.message,
            extra={"context": {"path": update.path, "error": type(error).__name__,
                               "severity": error.severity.value}})

    # ------------------------------------------------------------------
    # Backups
    # ------------------------------------------------------------------

    def unique_token(self) -> str:
        """Timestamp plus a per-writer monotonic counter."""
        with self._counter_lock:
            count = next(self._counter)
        return f"{time.strftime('%Y%m%d%H%M%S')}-{time.time_ns() % 1_000_000_000:09d}-{count:04d}"

    def _make_backup(self, destination: str, rel_path: str) -> str:
        """Copy the exact current bytes beside *destination* and verify them."""
        try:
            with open(destination, "rb") as f:
                original = f.read()
        except OSError as exc:
            raise BackupFailed(rel_path, f"cannot read original: {exc}") from exc

        for _ in range(100):
            backup_path = f"{destination}{BACKUP_INFIX}{self.unique_token()}"
            try:
                with open(backup_path, "xb") as f:
                    f.write(original)
                    f.flush()
                    os.fsync(f.fileno())
            except FileExistsError:
                continue
            except OSError as exc:
                raise BackupFailed(rel_path, str(exc)) from exc
            break
        else:
            raise BackupFailed(rel_path, "no free backup name")

        with open(backup_path, "rb") as f:
            if f.read() != original:
                raise BackupFailed(rel_path, "backup content does not match original")
        shutil.copymode(destination, backup_path)
        logger.debug("[Writer] Backed up %s to %s", rel_path, os.path.basename(backup_path))
        return backup_path

    # ------------------------------------------------------------------
    # Atomic file write
    # ------------------------------------------------------------------

    @staticmethod
    def _atomic_write(destination: str, data: bytes) -> None:
        """Write via a temp file in the same directory + ``os.replace``.

        New files get ``0o666`` minus the process umask; existing files keep
        their mode.
        """
        fd, tmp_path = _create_temp(os.path.dirname(destination))
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            if os.path.exists(destination):
                shutil.copymode(destination, tmp_path)
            os.replace(tmp_path, destination)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    # ------------------------------------------------------------------
    # Fallback location
    # ------------------------------------------------------------------

    def _save_to_fallback(self, update: FileUpdate, error: PromptApplyError) -> None:
        """Persist content outside the root so a failed write loses nothing."""
        if not self._fallback_dir:
            return
        base = os.path.basename(update.path.replace("\\", "/")) or "update"
        stem, suffix = os.path.splitext(base)
        try:
            os.makedirs(self._fallback_dir, exist_ok=True)
            target = os.path.join(self._fallback_dir, f"{stem}-{self.unique_token()}{suffix}")
            self._atomic_write(target, update.content.encode("utf-8"))
        except OSError as exc:
            logger.error("[Writer] Fallback save failed for %s: %s", update.path, exc)
            return
        error.fallback_path = target
        logger.warning("[Writer] Saved %s to fallback location %s", update.path, target,
                       extra={"context": {"path": update.path, "fallback": target}})
