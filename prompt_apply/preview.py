"""
Diff preview: compute per-file diffs for pending updates and show them
before anything is written.

Includes a Textual-based review screen that pauses the apply so the user
can pick which files to write, and a plain console prompt for terminals
where a full-screen app is not wanted.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional

from .editing.line_diff import DiffEngine, diff_stats, split_lines
from .errors import FileNotFound, PromptApplyError
from .models import ChangeType, DiffResult, FileUpdate, Operation
from .reader import RootFileReader

logger = logging.getLogger(__name__)

DEFAULT_CONTEXT_LINES = 3


@dataclass
class FilePreview:
    """Diff of one pending update against what is on disk now."""
    update: FileUpdate
    result: Optional[DiffResult] = None
    is_new: bool = False
    error: Optional[PromptApplyError] = None

    @property
    def path(self) -> str:
        return self.update.path

    @property
    def is_deletion(self) -> bool:
        return self.update.operation is Operation.DELETE

    @property
    def has_changes(self) -> bool:
        if self.error is not None:
            return False
        if self.is_new:
            return True
        return self.result is not None and self.result.has_changes

    def stats(self) -> tuple[int, int]:
        """``(added, removed)`` line counts; zeros when there is no diff."""
        if self.result is None:
            return 0, 0
        return diff_stats(self.result)


def _preview_one(update: FileUpdate, reader: RootFileReader, engine: DiffEngine) -> FilePreview:
    try:
        current = reader.read(update.path)
    except PromptApplyError as exc:
        logger.warning("[Preview] Cannot read %s: %s", update.path, exc.message)
        return FilePreview(update, error=exc)

    if update.operation is Operation.DELETE:
        if current is None:
            return FilePreview(update, error=FileNotFound(update.path))
        return FilePreview(update, result=engine.diff(current, ""))

    if current is None:
        return FilePreview(update, result=engine.diff("", update.content), is_new=True)
    return FilePreview(update, result=engine.diff(current, update.content))


def compute_previews(updates: list[FileUpdate], reader: RootFileReader,
                     engine: Optional[DiffEngine] = None,
                     max_workers: int = 4) -> list[FilePreview]:
    """Diff every update on a bounded pool; results keep input order."""
    if not updates:
        return []
    engine = engine or DiffEngine()
    workers = max(1, min(len(updates), max_workers))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="promptapply-diff") as pool:
        previews = list(pool.map(lambda u: _preview_one(u, reader, engine), updates))
    logger.info("[Preview] Computed %d preview(s)", len(previews))
    return previews


# ══════════════════════════════════════════════════════════════════
#  Rendering
# ══════════════════════════════════════════════════════════════════

def format_unified(path: str, result: DiffResult, context: int = DEFAULT_CONTEXT_LINES,
                   is_new: bool = False, is_deleted: bool = False) -> str:
    """Render *result* as a unified diff with *context* lines around each hunk.

    Returns an empty string when nothing changed.
    """
    lines = result.lines
    changed = [i for i, l in enumerate(lines) if l.change_type is not ChangeType.UNCHANGED]
    if not changed:
        return ""

    spans: list[tuple[int, int]] = []
    start = max(0, changed[0] - context)
    end = min(len(lines), changed[0] + context + 1)
    for i in changed[1:]:
        if i - context <= end:
            end = min(len(lines), i + context + 1)
        else:
            spans.append((start, end))
            start, end = max(0, i - context), min(len(lines), i + context + 1)
    spans.append((start, end))

    out = [
        "--- /dev/null" if is_new else f"--- a/{path}",
        "+++ /dev/null" if is_deleted else f"+++ b/{path}",
    ]
    for start, end in spans:
        before = lines[:start]
        chunk = lines[start:end]
        old_before = sum(1 for l in before if l.change_type is not ChangeType.ADDED)
        new_before = sum(1 for l in before if l.change_type is not ChangeType.REMOVED)
        old_count = sum(1 for l in chunk if l.change_type is not ChangeType.ADDED)
        new_count = sum(1 for l in chunk if l.change_type is not ChangeType.REMOVED)
        old_start = old_before + 1 if old_count else old_before
        new_start = new_before + 1 if new_count else new_before
        out.append(f"@@ -{old_start},{old_count} +{new_start},{new_count} @@")
        for line in chunk:
            if line.change_type is ChangeType.ADDED:
                out.append(f"+{line.new_line}")
            elif line.change_type is ChangeType.REMOVED:
                out.append(f"-{line.old_line}")
            else:
                out.append(f" {line.old_line}")
    if result.truncated:
        out.append(f"\\ Diff truncated: {result.reason}")
    return "\n".join(out)


def format_colored_diff(diff_text: str) -> str:
    """Add ANSI colors to a unified diff string.

    Green for additions (+), red for deletions (-), cyan for @@ hunks.
    """
    colored: list[str] = []
    for line in diff_text.splitlines():
        if line.startswith("+++") or line.startswith("---"):
            colored.append(f"\033[1m{line}\033[0m")  # bold
        elif line.startswith("@@"):
            colored.append(f"\033[36m{line}\033[0m")  # cyan
        elif line.startswith("+"):
            colored.append(f"\033[32m{line}\033[0m")  # green
        elif line.startswith("-"):
            colored.append(f"\033[31m{line}\033[0m")  # red
        elif line.startswith("\\"):
            colored.append(f"\033[33m{line}\033[0m")  # yellow
        else:
            colored.append(line)
    return "\n".join(colored)


def render_preview(preview: FilePreview, color: bool = True) -> str:
    """One file's header line plus its diff (or error) as display text."""
    added, removed = preview.stats()
    if preview.error is not None:
        header = f"{preview.path}: {preview.error.message}"
        return f"\033[31m{header}\033[0m" if color else header

    if preview.is_new:
        header = f"{preview.path} (new file, {len(split_lines(preview.update.content))} lines)"
    elif preview.is_deletion:
        header = f"{preview.path} (delete, -{removed})"
    elif not preview.has_changes:
        return f"{preview.path} (unchanged)"
    else:
        header = f"{preview.path} (+{added} -{removed})"

    diff_text = format_unified(preview.path, preview.result, is_new=preview.is_new,
                               is_deleted=preview.is_deletion)
    if color:
        return f"\033[1;33m{header}\033[0m\n{format_colored_diff(diff_text)}"
    return f"{header}\n{diff_text}"


# ══════════════════════════════════════════════════════════════════
#  Approval
# ══════════════════════════════════════════════════════════════════

def prompt_approval(previews: list[FilePreview], auto: bool = False,
                    mode: str = "console", color: bool = True) -> list[FileUpdate]:
    """Ask which previewed updates should be written.

    Previews with errors or without changes are never offered. In *auto*
    mode every remaining update is approved and its diff logged. *mode* is
    ``"console"`` for a line-based prompt or ``"tui"`` for the Textual
    review screen.
    """
    reviewable = [p for p in previews if p.has_changes]
    for p in previews:
        if p.error is not None:
            logger.warning("[Preview] Not offering %s: %s", p.path, p.error.message)
        elif not p.has_changes:
            logger.info("[Preview] %s is unchanged; skipping", p.path)

    if not reviewable:
        return []

    if auto:
        for p in reviewable:
            logger.info("[auto] Diff for %s:\n%s", p.path, render_preview(p, color=False))
        return [p.update for p in reviewable]

    if mode == "tui":
        return _textual_approval(reviewable)
    return _console_approval(reviewable, color=color)


def _console_approval(previews: list[FilePreview], color: bool = True) -> list[FileUpdate]:
    """Print every diff, then approve all, reject all or choose per file."""
    print("\n" + "=" * 60)
    print("  DIFF REVIEW")
    print("=" * 60)

    for p in previews:
        print(f"\n{'─' * 60}")
        print(render_preview(p, color=color))

    print("\n" + "=" * 60)
    print("  [A]pprove all  |  [R]eject all  |  [S]elect per file")
    print()

    while True:
        try:
            choice = input("  Your choice: ").strip().lower()
        except (EOFError, KeyboardInterrupt):
            return []
        if choice in ("a", "approve"):
            return [p.update for p in previews]
        elif choice in ("r", "reject"):
            return []
        elif choice in ("s", "select"):
            break
        else:
            print("  Invalid choice. Use A, R or S.")

    approved: list[FileUpdate] = []
    for p in previews:
        while True:
            try:
                answer = input(f"  Write {p.path}? [y/n]: ").strip().lower()
            except (EOFError, KeyboardInterrupt):
                return approved
            if answer in ("y", "yes"):
                approved.append(p.update)
                break
            elif answer in ("n", "no"):
                break
    return approved


def _format_rich_diff(diff_text: str) -> str:
    """Convert unified diff text to Rich markup for Textual display."""
    markup_lines: list[str] = []
    for line in diff_text.splitlines():
        escaped = line.replace("[", "\\[")
        if line.startswith("+++") or line.startswith("---"):
            markup_lines.append(f"[bold white]{escaped}[/bold white]")
        elif line.startswith("@@"):
            markup_lines.append(f"[cyan]{escaped}[/cyan]")
        elif line.startswith("+"):
            markup_lines.append(f"[green]{escaped}[/green]")
        elif line.startswith("-"):
            markup_lines.append(f"[red]{escaped}[/red]")
        else:
            markup_lines.append(escaped)
    return "\n".join(markup_lines)


def build_review_app(previews: list[FilePreview]):
    """Create the Textual review app; ``app.approved`` holds the result after exit."""
    from textual.app import App, ComposeResult
    from textual.binding import Binding
    from textual.containers import Horizontal, VerticalScroll
    from textual.widgets import Button, Checkbox, Footer, Static

    class ReviewApp(App):
        """Per-file diff review with selectable files."""

        CSS = """
        #title-bar {
            dock: top;
            height: 3;
            background: #1a1a2e;
            color: #e94560;
            text-align: center;
            padding: 1;
            text-style: bold;
        }
        #diff-scroll {
            height: 1fr;
            margin: 1 2;
            border: round #444;
            padding: 1;
        }
        .diff-content {
            margin: 0 0 1 0;
        }
        #action-buttons {
            dock: bottom;
            height: 3;
            align: center middle;
        }
        #action-buttons Button {
            margin: 0 2;
            min-width: 20;
        }
        """

        BINDINGS = [
            Binding("a", "approve", "Apply selected"),
            Binding("ctrl+s", "approve", "Apply selected"),
            Binding("escape", "reject", "Reject"),
            Binding("r", "reject", "Reject"),
        ]

        def __init__(self, previews: list[FilePreview]) -> None:
            super().__init__()
            self._previews = previews
            self.approved: list[FileUpdate] = []

        def compose(self) -> ComposeResult:
            yield Static(f" ━━  Diff Review — {len(self._previews)} file(s)  ━━ ",
                         id="title-bar")
            with VerticalScroll(id="diff-scroll"):
                for index, p in enumerate(self._previews):
                    added, removed = p.stats()
                    yield Checkbox(f"{p.path}  (+{added} -{removed})", value=True,
                                   id=f"file-{index}")
                    diff_text = format_unified(p.path, p.result, is_new=p.is_new,
                                               is_deleted=p.is_deletion)
                    yield Static(_format_rich_diff(diff_text), classes="diff-content")
            with Horizontal(id="action-buttons"):
                yield Button("✔ Apply selected", id="approve-btn", variant="success")
                yield Button("✕ Reject", id="reject-btn", variant="error")
            yield Footer()

        def on_button_pressed(self, event: Button.Pressed) -> None:
            if event.button.id == "approve-btn":
                self.action_approve()
            elif event.button.id == "reject-btn":
                self.action_reject()

        def action_approve(self) -> None:
            self.approved = [
                p.update for index, p in enumerate(self._previews)
                if self.query_one(f"#file-{index}", Checkbox).value
            ]
            self.exit()

        def action_reject(self) -> None:
            self.approved = []
            self.exit()

    return ReviewApp(previews)


def _textual_approval(previews: list[FilePreview]) -> list[FileUpdate]:
    app = build_review_app(previews)
    app.run()
    logger.info("[Preview] %d of %d file(s) approved", len(app.approved), len(previews))
    return app.approved
