"""
Line diff: minimal edit scripts between two texts.

Uses Myers' O(ND) greedy algorithm after trimming the common prefix and
suffix. Diagonals are followed as far as possible, so the earliest common
lines are matched first and the output is stable across runs. Within a
changed region removals are listed before additions.
"""

from __future__ import annotations

import logging
import re
from typing import Optional, Sequence

from ..models import ChangeType, DiffLine, DiffResult

logger = logging.getLogger(__name__)

_LINE_BREAK_RE = re.compile(r"\r\n|\r|\n")

DEFAULT_MAX_LINES = 50_000
DEFAULT_MAX_EDIT_DISTANCE = 1_000


def split_lines(text: str) -> list[str]:
    """Split on any newline convention; a trailing newline adds no empty line."""
    if not text:
        return []
    lines = _LINE_BREAK_RE.split(text)
    if lines and lines[-1] == "":
        lines.pop()
    return lines


def _shortest_edit_trace(a: Sequence[str], b: Sequence[str],
                         max_d: int) -> Optional[list[list[int]]]:
    """Run the forward Myers search and keep the frontier of every round.

    ``trace[d]`` holds ``V[k]`` for ``k`` in ``[-d-1, d+1]`` as it stood
    *before* round ``d``. Returns None when no script of length
    ``<= max_d`` exists.
    """
    n, m = len(a), len(b)
    bound = n + m
    offset = bound + 1
    v = [0] * (2 * bound + 3)
    trace: list[list[int]] = []

    for d in range(min(bound, max_d) + 1):
        trace.append(v[offset - d - 1: offset + d + 2])
        for k in range(-d, d + 1, 2):
            if k == -d or (k != d and v[offset + k - 1] < v[offset + k + 1]):
                x = v[offset + k + 1]          # step down: insertion
            else:
                x = v[offset + k - 1] + 1      # step right: deletion
            y = x - k
            while x < n and y < m and a[x] == b[y]:
                x += 1
                y += 1
            v[offset + k] = x
            if x >= n and y >= m:
                return trace
    return None


def _backtrack(trace: list[list[int]], n: int, m: int) -> list[tuple[str, int, int]]:
    """Walk the stored frontiers back from ``(n, m)`` to ``(0, 0)``.

    Yields ``("equal", i, j)``, ``("delete", i, j)`` or ``("insert", i, j)``
    in forward order, where ``i``/``j`` index the old/new sequences.
    """
    ops: list[tuple[str, int, int]] = []
    x, y = n, m
    for d in range(len(trace) - 1, -1, -1):
        v = trace[d]
        base = d + 1
        k = x - y
        if k == -d or (k != d and v[base + k - 1] < v[base + k + 1]):
            prev_k = k + 1
        else:
            prev_k = k - 1
        prev_x = v[base + prev_k]
        prev_y = prev_x - prev_k
        while x > prev_x and y > prev_y:
            x -= 1
            y -= 1
            ops.append(("equal", x, y))
        if d > 0:
            if x == prev_x:
                ops.append(("insert", prev_x, prev_y))
            else:
                ops.append(("delete", prev_x, prev_y))
        x, y = prev_x, prev_y
    ops.reverse()
    return ops


class DiffEngine:
    """Pure, synchronous line differ.

    Parameters
    ----------
    max_lines:
        Inputs longer than this are clipped and the result is flagged
        ``truncated``.
    max_edit_distance:
        Upper bound on the edit script searched for. Beyond it the changed
        region is reported as one removed block followed by one added
        block, again flagged ``truncated``.
    """

    def __init__(self, max_lines: int = DEFAULT_MAX_LINES,
                 max_edit_distance: int = DEFAULT_MAX_EDIT_DISTANCE) -> None:
        self._max_lines = max(1, max_lines)
        self._max_edit_distance = max(1, max_edit_distance)

    def diff(self, old_text: str, new_text: str) -> DiffResult:
        old_lines = split_lines(old_text or "")
        new_lines = split_lines(new_text or "")
        return self.diff_lines(old_lines, new_lines)

    def diff_lines(self, old_lines: Sequence[str], new_lines: Sequence[str]) -> DiffResult:
        result = DiffResult()
        if len(old_lines) > self._max_lines or len(new_lines) > self._max_lines:
            result.truncated = True
            result.reason = (f"input clipped to the first {self._max_lines} lines "
                             f"(old={len(old_lines)}, new={len(new_lines)})")
            logger.warning("[Diff] %s", result.reason)
            old_lines = old_lines[:self._max_lines]
            new_lines = new_lines[:self._max_lines]

        n, m = len(old_lines), len(new_lines)

        prefix = 0
        while prefix < n and prefix < m and old_lines[prefix] == new_lines[prefix]:
            prefix += 1
        suffix = 0
        while (suffix < n - prefix and suffix < m - prefix
               and old_lines[n - 1 - suffix] == new_lines[m - 1 - suffix]):
            suffix += 1

        out = result.lines
        for i in range(prefix):
            out.append(DiffLine.unchanged(old_lines[i], i + 1, i + 1))

        a = old_lines[prefix:n - suffix]
        b = new_lines[prefix:m - suffix]
        if a or b:
            self._diff_middle(a, b, prefix, result)

        for i in range(suffix):
            oi, ni = n - suffix + i, m - suffix + i
            out.append(DiffLine.unchanged(old_lines[oi], oi + 1, ni + 1))
        return result

    def _diff_middle(self, a: Sequence[str], b: Sequence[str], start: int,
                     result: DiffResult) -> None:
        out = result.lines
        if not a or not b:
            ops = [("delete", i, 0) for i in range(len(a))] + \
                  [("insert", len(a), j) for j in range(len(b))]
        else:
            trace = _shortest_edit_trace(a, b, self._max_edit_distance)
            if trace is None:
                result.truncated = True
                result.reason = (f"more than {self._max_edit_distance} edits; "
                                 f"changed region shown as a block replacement")
                logger.warning("[Diff] %s", result.reason)
                ops = [("delete", i, 0) for i in range(len(a))] + \
                      [("insert", len(a), j) for j in range(len(b))]
            else:
                ops = _backtrack(trace, len(a), len(b))

        removed: list[DiffLine] = []
        added: list[DiffLine] = []

        def _flush() -> None:
            out.extend(removed)
            out.extend(added)
            removed.clear()
            added.clear()

        for op, i, j in ops:
            if op == "equal":
                _flush()
                out.append(DiffLine.unchanged(a[i], start + i + 1, start + j + 1))
            elif op == "delete":
                removed.append(DiffLine.removed(a[i], start + i + 1))
            else:
                added.append(DiffLine.added(b[j], start + j + 1))
        _flush()


def diff_stats(result: DiffResult) -> tuple[int, int]:
    """Return ``(added, removed)`` line counts."""
    counts = result.stats()
    return counts[ChangeType.ADDED.value], counts[ChangeType.REMOVED.value]
