"""Data model shared by the parser, diff engine, writer and monitor."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Optional

from .errors import PromptApplyError


class Operation(str, Enum):
    UPDATE = "update"
    CREATE = "create"
    DELETE = "delete"


@dataclass(frozen=True)
class FileUpdate:
    """One parsed instruction to create, replace or delete a file.

    ``path`` is always relative to the bound root and doubles as the
    identity key.
    """
    path: str
    content: str
    operation: Operation = Operation.UPDATE
    language: str = "text"


class ChangeType(str, Enum):
    UNCHANGED = "unchanged"
    ADDED = "added"
    REMOVED = "removed"


@dataclass(frozen=True)
class DiffLine:
    """One row of a line-aligned comparison."""
    old_line: Optional[str]
    new_line: Optional[str]
    old_line_number: Optional[int]
    new_line_number: Optional[int]
    change_type: ChangeType

    @classmethod
    def unchanged(cls, text: str, old_no: int, new_no: int) -> "DiffLine":
        return cls(text, text, old_no, new_no, ChangeType.UNCHANGED)

    @classmethod
    def removed(cls, text: str, old_no: int) -> "DiffLine":
        return cls(text, None, old_no, None, ChangeType.REMOVED)

    @classmethod
    def added(cls, text: str, new_no: int) -> "DiffLine":
        return cls(None, text, None, new_no, ChangeType.ADDED)


@dataclass
class DiffResult:
    """Ordered diff lines plus a flag telling whether processing was clipped."""
    lines: list[DiffLine] = field(default_factory=list)
    truncated: bool = False
    reason: str = ""

    def __iter__(self) -> Iterator[DiffLine]:
        return iter(self.lines)

    def __len__(self) -> int:
        return len(self.lines)

    def __getitem__(self, index):
        return self.lines[index]

    @property
    def has_changes(self) -> bool:
        return any(l.change_type is not ChangeType.UNCHANGED for l in self.lines)

    def stats(self) -> dict[str, int]:
        counts = {t.value: 0 for t in ChangeType}
        for line in self.lines:
            counts[line.change_type.value] += 1
        return counts


@dataclass(frozen=True)
class ChangeSet:
    """Absolute paths that differ between two directory snapshots."""
    added: frozenset[str] = frozenset()
    removed: frozenset[str] = frozenset()
    modified: frozenset[str] = frozenset()

    def __bool__(self) -> bool:
        return bool(self.added or self.removed or self.modified)

    @property
    def all_paths(self) -> frozenset[str]:
        return self.added | self.removed | self.modified

    def relative_to(self, root: str) -> "ChangeSet":
        def rel(paths: frozenset[str]) -> frozenset[str]:
            return frozenset(os.path.relpath(p, root) for p in paths)
        return ChangeSet(rel(self.added), rel(self.removed), rel(self.modified))


@dataclass
class BatchResult:
    """Outcome of one SafeFileWriter.apply() call."""
    succeeded: list[str] = field(default_factory=list)
    failed: list[tuple[str, PromptApplyError]] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    backups: dict[str, str] = field(default_factory=dict)
    fallbacks: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed and not self.skipped

    def summary(self) -> str:
        parts = [f"{len(self.succeeded)} written"]
        if self.failed:
            parts.append(f"{len(self.failed)} failed")
        if self.skipped:
            parts.append(f"{len(self.skipped)} skipped")
        if self.fallbacks:
            parts.append(f"{len(self.fallbacks)} saved to fallback")
        return ", ".join(parts)
