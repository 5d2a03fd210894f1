"""Tests for the SafeFileWriter."""

import gc
import os
import stat
import threading

import pytest

from prompt_apply.editing.file_writer import BACKUP_INFIX, SafeFileWriter
from prompt_apply.editing.response_parser import parse_response
from prompt_apply.errors import (
    FileAccessDenied,
    FileNotFound,
    FileWriteError,
    InvalidPath,
    PathTraversalAttempt,
)
from prompt_apply.models import FileUpdate, Operation


@pytest.fixture
def root(tmp_path):
    path = tmp_path / "root"
    path.mkdir()
    return path


def _backups(directory, name):
    return sorted(p for p in os.listdir(directory) if p.startswith(name + BACKUP_INFIX))


class TestWrites:
    def test_creates_new_file_with_parents(self, root):
        result = SafeFileWriter().apply([FileUpdate("src/pkg/mod.py", "x = 1\n")], str(root))
        assert result.succeeded == ["src/pkg/mod.py"]
        assert result.ok
        assert (root / "src" / "pkg" / "mod.py").read_text() == "x = 1\n"
        assert result.backups == {}

    def test_content_is_written_verbatim(self, root):
        content = "line1\r\nline2\n\ttab ü\n"
        SafeFileWriter().apply([FileUpdate("a.txt", content)], str(root))
        assert (root / "a.txt").read_bytes() == content.encode("utf-8")

    def test_backslash_paths(self, root):
        result = SafeFileWriter().apply([FileUpdate("dir\\sub\\f.txt", "hi")], str(root))
        assert result.ok
        assert (root / "dir" / "sub" / "f.txt").read_text() == "hi"

    def test_overwrite_makes_byte_identical_backup(self, root):
        original = b"old content\x00\xff binary-ish\n"
        (root / "a.bin").write_bytes(original)
        result = SafeFileWriter().apply([FileUpdate("a.bin", "new\n")], str(root))
        assert result.ok
        backup_path = result.backups["a.bin"]
        assert os.path.basename(backup_path).startswith("a.bin" + BACKUP_INFIX)
        with open(backup_path, "rb") as f:
            assert f.read() == original
        assert (root / "a.bin").read_text() == "new\n"

    def test_backup_disabled(self, root):
        (root / "a.txt").write_text("old")
        result = SafeFileWriter(backup=False).apply([FileUpdate("a.txt", "new")], str(root))
        assert result.ok
        assert result.backups == {}
        assert _backups(root, "a.txt") == []

    def test_preserves_file_mode(self, root):
        script = root / "run.sh"
        script.write_text("#!/bin/sh\n")
        os.chmod(script, 0o755)
        SafeFileWriter().apply([FileUpdate("run.sh", "#!/bin/sh\necho hi\n")], str(root))
        assert stat.S_IMODE(os.stat(script).st_mode) == 0o755

    def test_new_file_mode_follows_umask(self, root):
        previous = os.umask(0o027)
        try:
            SafeFileWriter().apply([FileUpdate("fresh.txt", "x")], str(root))
        finally:
            os.umask(previous)
        assert stat.S_IMODE(os.stat(root / "fresh.txt").st_mode) == 0o640

    def test_no_temp_files_left_behind(self, root):
        SafeFileWriter().apply([FileUpdate("a.txt", "1"), FileUpdate("b.txt", "2")], str(root))
        assert sorted(os.listdir(root)) == ["a.txt", "b.txt"]

    def test_delete_backs_up_then_removes(self, root):
        (root / "gone.txt").write_text("bye")
        update = FileUpdate("gone.txt", "", operation=Operation.DELETE)
        result = SafeFileWriter().apply([update], str(root))
        assert result.succeeded == ["gone.txt"]
        assert not (root / "gone.txt").exists()
        with open(result.backups["gone.txt"]) as f:
            assert f.read() == "bye"

    def test_delete_missing_file_fails(self, root):
        update = FileUpdate("missing.txt", "", operation=Operation.DELETE)
        result = SafeFileWriter().apply([update], str(root))
        assert result.failed[0][0] == "missing.txt"
        assert isinstance(result.failed[0][1], FileNotFound)

    def test_writing_over_a_directory_fails(self, root):
        (root / "adir").mkdir()
        result = SafeFileWriter().apply([FileUpdate("adir", "x")], str(root))
        assert len(result.failed) == 1
        assert (root / "adir").is_dir()


class TestPathValidation:
    def test_traversal_rejected_and_batch_continues(self, root, tmp_path):
        updates = [FileUpdate("../../etc/passwd", "pwned"), FileUpdate("ok.txt", "fine")]
        result = SafeFileWriter().apply(updates, str(root))
        assert result.succeeded == ["ok.txt"]
        assert len(result.failed) == 1
        path, error = result.failed[0]
        assert path == "../../etc/passwd"
        assert isinstance(error, PathTraversalAttempt)
        assert not error.recoverable
        assert not (tmp_path.parent / "etc" / "passwd").exists()
        assert (root / "ok.txt").read_text() == "fine"

    @pytest.mark.parametrize("path", [
        "./a.txt",
        "a/./b.txt",
        "a/../b.txt",
        "..\\evil.txt",
        "/etc/passwd",
        "\\windows\\system.ini",
        "C:\\evil.txt",
    ])
    def test_dot_components_and_absolute_paths(self, root, path):
        result = SafeFileWriter().apply([FileUpdate(path, "x")], str(root))
        assert isinstance(result.failed[0][1], PathTraversalAttempt)
        assert os.listdir(root) == []

    @pytest.mark.parametrize("path", ["", "   ", "a\x00b.txt"])
    def test_invalid_paths(self, root, path):
        result = SafeFileWriter().apply([FileUpdate(path, "x")], str(root))
        assert isinstance(result.failed[0][1], InvalidPath)

    def test_symlink_escape_is_rejected(self, root, tmp_path):
        outside = tmp_path / "outside"
        outside.mkdir()
        os.symlink(outside, root / "link")
        result = SafeFileWriter().apply([FileUpdate("link/evil.txt", "x")], str(root))
        assert isinstance(result.failed[0][1], PathTraversalAttempt)
        assert os.listdir(outside) == []

    def test_missing_root_fails_every_update(self, tmp_path):
        result = SafeFileWriter().apply([FileUpdate("a.txt", "x")], str(tmp_path / "nope"))
        assert isinstance(result.failed[0][1], FileNotFound)


class TestBatchBehaviour:
    def test_results_follow_input_order(self, root):
        updates = [FileUpdate(f"f{i}.txt", str(i)) for i in range(12)]
        result = SafeFileWriter(max_workers=4).apply(updates, str(root))
        assert result.succeeded == [u.path for u in updates]
        for i in range(12):
            assert (root / f"f{i}.txt").read_text() == str(i)

    def test_same_path_twice_applies_in_order(self, root):
        (root / "a.txt").write_text("v0")
        updates = [FileUpdate("a.txt", "v1"), FileUpdate("a.txt", "v2")]
        result = SafeFileWriter(max_workers=4).apply(updates, str(root))
        assert result.succeeded == ["a.txt", "a.txt"]
        assert (root / "a.txt").read_text() == "v2"
        contents = sorted((root / name).read_text() for name in _backups(root, "a.txt"))
        assert contents == ["v0", "v1"]

    def test_backup_names_unique_across_rapid_applies(self, root):
        writer = SafeFileWriter()
        (root / "a.txt").write_text("v0")
        backups = []
        for i in range(1, 6):
            result = writer.apply([FileUpdate("a.txt", f"v{i}")], str(root))
            backups.append(result.backups["a.txt"])
        assert len(set(backups)) == 5
        for i, backup in enumerate(backups):
            with open(backup) as f:
                assert f.read() == f"v{i}"

    def test_unique_token_never_repeats(self):
        writer = SafeFileWriter()
        tokens = {writer.unique_token() for _ in range(1000)}
        assert len(tokens) == 1000

    def test_cancel_before_start_skips_everything(self, root):
        cancel = threading.Event()
        cancel.set()
        updates = [FileUpdate("a.txt", "1"), FileUpdate("b.txt", "2")]
        result = SafeFileWriter().apply(updates, str(root), cancel_event=cancel)
        assert result.skipped == ["a.txt", "b.txt"]
        assert result.succeeded == []
        assert not result.ok
        assert os.listdir(root) == []

    def test_cancel_midway_keeps_committed_files(self, root):
        cancel = threading.Event()
        seen = []

        def _progress(path, error):
            seen.append(path)
            cancel.set()

        updates = [FileUpdate("a.txt", "1"), FileUpdate("b.txt", "2"), FileUpdate("c.txt", "3")]
        result = SafeFileWriter(max_workers=1).apply(
            updates, str(root), cancel_event=cancel, progress=_progress)
        assert result.succeeded == ["a.txt"]
        assert result.skipped == ["b.txt", "c.txt"]
        assert seen == ["a.txt"]
        assert (root / "a.txt").read_text() == "1"
        assert not (root / "b.txt").exists()

    def test_progress_reports_failures(self, root):
        calls = []
        updates = [FileUpdate("../x.txt", "1"), FileUpdate("y.txt", "2")]
        SafeFileWriter(max_workers=1).apply(
            updates, str(root), progress=lambda p, e: calls.append((p, type(e).__name__)))
        assert sorted(calls) == [("../x.txt", "PathTraversalAttempt"), ("y.txt", "NoneType")]

    def test_concurrent_applies_to_same_path(self, root):
        (root / "shared.txt").write_text("start")
        writer = SafeFileWriter(max_workers=2)
        results = []

        def _run(value):
            results.append(writer.apply([FileUpdate("shared.txt", value)], str(root)))

        threads = [threading.Thread(target=_run, args=(f"value{i}",)) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert all(r.ok for r in results)
        assert (root / "shared.txt").read_text() in {f"value{i}" for i in range(4)}
        backup_contents = {(root / n).read_text() for n in _backups(root, "shared.txt")}
        assert "start" in backup_contents
        assert len(_backups(root, "shared.txt")) == 4

    def test_unencodable_content_fails_alone(self, root):
        updates = parse_response('[{"path": "a.txt", "content": "\\ud800"},'
                                 ' {"path": "b.txt", "content": "ok"}]')
        result = SafeFileWriter(max_workers=1).apply(updates, str(root))
        assert result.succeeded == ["b.txt"]
        path, error = result.failed[0]
        assert path == "a.txt"
        assert isinstance(error, FileWriteError)
        assert (root / "b.txt").read_text() == "ok"
        assert sorted(os.listdir(root)) == ["b.txt"]

    def test_unencodable_content_leaves_existing_file_alone(self, root):
        (root / "a.txt").write_text("keep")
        result = SafeFileWriter().apply([FileUpdate("a.txt", "bad \udc80")], str(root))
        assert isinstance(result.failed[0][1], FileWriteError)
        assert (root / "a.txt").read_text() == "keep"
        assert _backups(root, "a.txt") == []

    def test_unexpected_error_is_reported_per_path(self, root, monkeypatch):
        original = SafeFileWriter._write_validated

        def _flaky(self, update, real_root, destination):
            if update.path == "boom.txt":
                raise RuntimeError("unexpected")
            return original(self, update, real_root, destination)

        monkeypatch.setattr(SafeFileWriter, "_write_validated", _flaky)
        updates = [FileUpdate("boom.txt", "1"), FileUpdate("boom.txt", "2"),
                   FileUpdate("fine.txt", "3")]
        result = SafeFileWriter(max_workers=1).apply(updates, str(root))
        assert [p for p, _ in result.failed] == ["boom.txt", "boom.txt"]
        assert isinstance(result.failed[0][1], FileWriteError)
        assert result.succeeded == ["fine.txt"]

    def test_path_locks_are_released_after_use(self, root):
        writer = SafeFileWriter(max_workers=4)
        writer.apply([FileUpdate(f"f{i}.txt", str(i)) for i in range(10)], str(root))
        gc.collect()
        assert len(writer._path_locks) == 0

    def test_empty_batch(self, root):
        result = SafeFileWriter().apply([], str(root))
        assert result.ok
        assert result.succeeded == []


class TestFallback:
    def _deny_under(self, monkeypatch, real_root):
        original = SafeFileWriter._atomic_write

        def _fake(destination, data):
            if destination.startswith(real_root):
                raise PermissionError(13, "Permission denied", destination)
            return original(destination, data)

        monkeypatch.setattr(SafeFileWriter, "_atomic_write", staticmethod(_fake))

    def test_denied_write_is_saved_to_fallback(self, root, tmp_path, monkeypatch):
        self._deny_under(monkeypatch, os.path.realpath(root))
        fallback_dir = tmp_path / "exports"
        writer = SafeFileWriter(fallback_dir=str(fallback_dir))
        result = writer.apply([FileUpdate("src/App.swift", "let a = 1\n")], str(root))

        assert isinstance(result.failed[0][1], FileAccessDenied)
        saved = result.fallbacks["src/App.swift"]
        assert os.path.dirname(saved) == str(fallback_dir)
        name = os.path.basename(saved)
        assert name.startswith("App-") and name.endswith(".swift")
        with open(saved) as f:
            assert f.read() == "let a = 1\n"

    def test_no_fallback_dir_means_no_fallback(self, root, monkeypatch):
        self._deny_under(monkeypatch, os.path.realpath(root))
        result = SafeFileWriter().apply([FileUpdate("a.txt", "x")], str(root))
        assert isinstance(result.failed[0][1], FileAccessDenied)
        assert result.fallbacks == {}

    def test_traversal_is_never_saved_to_fallback(self, root, tmp_path):
        fallback_dir = tmp_path / "exports"
        writer = SafeFileWriter(fallback_dir=str(fallback_dir))
        result = writer.apply([FileUpdate("../evil.txt", "x")], str(root))
        assert result.fallbacks == {}
        assert not fallback_dir.exists()
