"""
Root-bounded path resolution shared by the writer and the reader.

A relative update path is split into components; ``.`` and ``..`` are
rejected outright (never stripped), absolute paths are rejected, and the
joined destination is checked against the root with symlinks resolved.
"""

from __future__ import annotations

import os
import re

from .errors import InvalidPath, PathTraversalAttempt

_SEPARATORS = re.compile(r"[\\/]+")
_DRIVE = re.compile(r"^[A-Za-z]:")


def split_relative_path(path: str) -> list[str]:
    """Return the components of *path*, raising on anything that could escape."""
    if path is None or not path.strip():
        raise InvalidPath(str(path), "empty path")
    raw = path.strip()
    if "\x00" in raw:
        raise InvalidPath(raw, "contains NUL byte")
    if raw.startswith(("/", "\\")) or _DRIVE.match(raw):
        raise PathTraversalAttempt(raw, "absolute path")
    components = [c for c in _SEPARATORS.split(raw) if c]
    for component in components:
        if component in (".", ".."):
            raise PathTraversalAttempt(raw, f"component {component!r}")
    if not components:
        raise InvalidPath(raw, "no file name")
    return components


def is_within(root: str, candidate: str) -> bool:
    """True if *candidate* equals *root* or lies below it (both already resolved)."""
    try:
        return os.path.commonpath([root, candidate]) == root
    except ValueError:
        return False


def resolve_under_root(root: str, path: str) -> str:
    """Absolute destination for *path* under *root*.

    Raises :class:`PathTraversalAttempt` if the result, after resolving
    symlinks, falls outside the resolved root.
    """
    components = split_relative_path(path)
    real_root = os.path.realpath(root)
    destination = os.path.join(real_root, *components)
    ensure_within_root(real_root, destination, path)
    return destination


def ensure_within_root(real_root: str, destination: str, original: str) -> None:
    resolved = os.path.realpath(destination)
    if resolved == real_root or not is_within(real_root, resolved):
        raise PathTraversalAttempt(original, "resolves outside root")
