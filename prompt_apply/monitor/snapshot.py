"""
Directory snapshots: absolute path -> ``st_mtime_ns`` for every visible file.
"""

from __future__ import annotations

import logging
import os
from typing import Iterable, Optional

from ..models import ChangeSet

logger = logging.getLogger(__name__)

EXCLUDED_DIRS = frozenset({".git", "node_modules", "dist", "build"})

DirectorySnapshot = dict[str, int]


def _is_hidden(name: str) -> bool:
    return name.startswith(".")


def take_snapshot(root: str, excluded_dirs: Optional[Iterable[str]] = None) -> DirectorySnapshot:
    """Walk *root* recursively and stamp every file.

    Hidden files and directories are skipped, as are directories whose
    name is in *excluded_dirs*. Entries that vanish mid-walk are ignored.
    """
    skip = EXCLUDED_DIRS if excluded_dirs is None else frozenset(excluded_dirs)
    snapshot: DirectorySnapshot = {}

    def _on_error(exc: OSError) -> None:
        logger.debug("[Monitor] Skipping unreadable entry: %s", exc)

    for dirpath, dirnames, filenames in os.walk(root, onerror=_on_error):
        dirnames[:] = [d for d in dirnames if not _is_hidden(d) and d not in skip]
        for name in filenames:
            if _is_hidden(name):
                continue
            path = os.path.join(dirpath, name)
            try:
                snapshot[path] = os.stat(path).st_mtime_ns
            except OSError:
                continue
    return snapshot


def compare_snapshots(old: DirectorySnapshot, new: DirectorySnapshot) -> ChangeSet:
    old_keys, new_keys = old.keys(), new.keys()
    return ChangeSet(
        added=frozenset(new_keys - old_keys),
        removed=frozenset(old_keys - new_keys),
        modified=frozenset(p for p in old_keys & new_keys if old[p] != new[p]),
    )
