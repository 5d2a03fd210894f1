"""Tests for the DiffEngine."""

import pytest

from prompt_apply.editing.line_diff import DiffEngine, diff_stats, split_lines
from prompt_apply.models import ChangeType, DiffLine


def _kinds(result):
    return [(l.change_type.value, l.old_line if l.old_line is not None else l.new_line)
            for l in result]


class TestSplitLines:
    def test_empty(self):
        assert split_lines("") == []

    def test_trailing_newline_adds_no_line(self):
        assert split_lines("a\nb\n") == ["a", "b"]

    def test_mixed_newlines(self):
        assert split_lines("a\r\nb\rc\n") == ["a", "b", "c"]

    def test_blank_lines_kept(self):
        assert split_lines("a\n\nb") == ["a", "", "b"]


class TestMinimalDiff:
    def test_single_line_replacement(self):
        result = DiffEngine().diff("a\nb\nc", "a\nX\nc")
        assert list(result) == [
            DiffLine.unchanged("a", 1, 1),
            DiffLine.removed("b", 2),
            DiffLine.added("X", 2),
            DiffLine.unchanged("c", 3, 3),
        ]
        assert not result.truncated

    @pytest.mark.parametrize("text", ["", "one", "a\nb\nc\n", "x\n\ny\n\n", "dup\ndup\ndup"])
    def test_identical_inputs_are_all_unchanged(self, text):
        result = DiffEngine().diff(text, text)
        assert len(result) == len(split_lines(text))
        assert all(l.change_type is ChangeType.UNCHANGED for l in result)
        assert not result.has_changes

    def test_insertion_does_not_cascade(self):
        old = "a\nb\nc\nd"
        new = "a\nINSERTED\nb\nc\nd"
        result = DiffEngine().diff(old, new)
        assert _kinds(result) == [
            ("unchanged", "a"),
            ("added", "INSERTED"),
            ("unchanged", "b"),
            ("unchanged", "c"),
            ("unchanged", "d"),
        ]

    def test_deletion_does_not_cascade(self):
        result = DiffEngine().diff("a\nb\nc\nd", "a\nc\nd")
        assert _kinds(result) == [
            ("unchanged", "a"),
            ("removed", "b"),
            ("unchanged", "c"),
            ("unchanged", "d"),
        ]

    def test_line_numbers(self):
        result = DiffEngine().diff("a\nb\nc", "x\na\nc\ny")
        assert [(l.old_line_number, l.new_line_number) for l in result] == [
            (None, 1),   # +x
            (1, 2),      # a
            (2, None),   # -b
            (3, 3),      # c
            (None, 4),   # +y
        ]

    def test_every_line_carries_the_right_numbers(self):
        result = DiffEngine().diff("p\nq\nr\ns\nt", "p\nr\nQ\ns\nu\nt")
        for line in result:
            if line.change_type is ChangeType.UNCHANGED:
                assert line.old_line_number is not None and line.new_line_number is not None
            elif line.change_type is ChangeType.ADDED:
                assert line.old_line_number is None and line.new_line_number is not None
            else:
                assert line.old_line_number is not None and line.new_line_number is None

    def test_edit_script_reconstructs_both_sides(self):
        old = "one\ntwo\nthree\nfour\nfive\nsix"
        new = "zero\none\nthree\nFOUR\nfive\nsix\nseven"
        result = DiffEngine().diff(old, new)
        assert [l.old_line for l in result if l.change_type is not ChangeType.ADDED] == \
            split_lines(old)
        assert [l.new_line for l in result if l.change_type is not ChangeType.REMOVED] == \
            split_lines(new)

    def test_edit_count_is_minimal(self):
        # LCS of these is "a b d" (3), so 2 removals and 1 addition.
        result = DiffEngine().diff("a\nb\nc\nd\ne", "a\nb\nd\nf")
        added, removed = diff_stats(result)
        assert (added, removed) == (1, 2)

    def test_removals_listed_before_additions(self):
        result = DiffEngine().diff("keep\nold1\nold2\nkeep2", "keep\nnew1\nnew2\nkeep2")
        assert _kinds(result) == [
            ("unchanged", "keep"),
            ("removed", "old1"),
            ("removed", "old2"),
            ("added", "new1"),
            ("added", "new2"),
            ("unchanged", "keep2"),
        ]

    def test_from_empty(self):
        result = DiffEngine().diff("", "a\nb\n")
        assert _kinds(result) == [("added", "a"), ("added", "b")]

    def test_to_empty(self):
        result = DiffEngine().diff("a\nb\n", "")
        assert _kinds(result) == [("removed", "a"), ("removed", "b")]

    def test_deterministic(self):
        engine = DiffEngine()
        old, new = "a\nb\na\nb\na", "b\na\nb\na\nb"
        assert list(engine.diff(old, new)) == list(engine.diff(old, new))

    def test_stats(self):
        result = DiffEngine().diff("a\nb\nc", "a\nX\nc")
        assert result.stats() == {"unchanged": 2, "added": 1, "removed": 1}


class TestLimits:
    def test_clipped_input_is_flagged(self):
        old = "\n".join(str(i) for i in range(20))
        new = "\n".join(str(i) for i in range(20)) + "\nextra"
        result = DiffEngine(max_lines=10).diff(old, new)
        assert result.truncated
        assert "clipped" in result.reason
        assert len(result) == 10

    def test_edit_distance_ceiling_falls_back_to_block(self):
        old = "\n".join(f"old{i}" for i in range(10))
        new = "\n".join(f"new{i}" for i in range(10))
        result = DiffEngine(max_edit_distance=5).diff(old, new)
        assert result.truncated
        kinds = [l.change_type for l in result]
        assert kinds == [ChangeType.REMOVED] * 10 + [ChangeType.ADDED] * 10

    def test_within_limits_is_not_flagged(self):
        result = DiffEngine(max_lines=100, max_edit_distance=100).diff("a\nb", "a\nc")
        assert not result.truncated
        assert result.reason == ""

    def test_large_input_stays_responsive(self):
        old = "\n".join(f"line {i}" for i in range(20_000))
        new_lines = [f"line {i}" for i in range(20_000)]
        new_lines[10_000] = "changed"
        result = DiffEngine().diff(old, "\n".join(new_lines))
        assert diff_stats(result) == (1, 1)
