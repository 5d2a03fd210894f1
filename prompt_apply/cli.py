"""
`promptapply` command line.

Commands
--------
promptapply parse RESPONSE [--json]                -- list the file updates found
promptapply diff  RESPONSE --root DIR              -- preview diffs against DIR
promptapply apply RESPONSE --root DIR              -- review, then write approved files
promptapply apply RESPONSE --root DIR --yes        -- write without asking
promptapply watch --root DIR                       -- print external changes until Ctrl+C

RESPONSE is a file containing model output, or ``-`` for stdin.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import Optional

from tqdm import tqdm

from .config import Config
from .editing.response_parser import parse_response
from .log_buffer import LogBuffer, setup_logger
from .monitor.change_monitor import ChangeQueue
from .preview import prompt_approval, render_preview
from .session import ApplySession

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _read_response(source: str) -> bytes:
    """Return raw bytes from *source* (a path or ``-``); exits if unreadable."""
    if source == "-":
        return sys.stdin.buffer.read()
    try:
        with open(source, "rb") as f:
            return f.read()
    except OSError as exc:
        print(f"Cannot read {source}: {exc}", file=sys.stderr)
        sys.exit(1)


def _load_config(args: argparse.Namespace) -> Config:
    config = Config.load(getattr(args, "config", None))
    if getattr(args, "workers", None):
        config.WRITE_WORKERS = max(1, args.workers)
    if getattr(args, "no_backup", False):
        config.BACKUP_ENABLED = False
    if getattr(args, "fallback_dir", None):
        config.FALLBACK_DIR = os.path.expanduser(args.fallback_dir)
    setup_logger(config.LOG_DIR,
                 LogBuffer(config.LOG_BUFFER_MAX_LINES, config.LOG_BUFFER_MAX_CHARS))
    return config


def _require_root(root: str) -> str:
    if not os.path.isdir(root):
        print(f"Root directory does not exist: {root}", file=sys.stderr)
        sys.exit(1)
    return root


# ---------------------------------------------------------------------------
# Sub-command handlers
# ---------------------------------------------------------------------------

def _cmd_parse(args: argparse.Namespace) -> None:
    """Print the updates found in a model response."""
    _load_config(args)
    updates = parse_response(_read_response(args.response))

    if args.json:
        print(json.dumps([
            {"path": u.path, "operation": u.operation.value,
             "language": u.language, "content": u.content}
            for u in updates
        ], indent=2))
        return

    if not updates:
        print("  (no file updates found)")
        return
    print(f"\nFile updates  [{len(updates)} found]")
    print("-" * 60)
    for u in updates:
        print(f"  {u.operation.value:<7} {u.path:<40} {u.language:<12} "
              f"{len(u.content.splitlines())} lines")


def _cmd_diff(args: argparse.Namespace) -> None:
    """Show what applying a response would change under the root."""
    config = _load_config(args)
    root = _require_root(args.root)
    with ApplySession(root, config) as session:
        updates = session.parse(_read_response(args.response))
        if not updates:
            print("  (no file updates found)")
            return
        for preview in session.preview(updates):
            print(f"\n{'─' * 60}")
            print(render_preview(preview, color=not args.no_color))


def _cmd_apply(args: argparse.Namespace) -> None:
    """Preview, approve and write a response's updates."""
    config = _load_config(args)
    root = _require_root(args.root)
    with ApplySession(root, config) as session:
        updates = session.parse(_read_response(args.response))
        if not updates:
            print("  (no file updates found)")
            return

        previews = session.preview(updates)
        approved = prompt_approval(previews, auto=args.yes,
                                   mode="tui" if args.tui else "console",
                                   color=not args.no_color)
        refused = [p for p in previews if p.error is not None]
        for p in refused:
            print(f"  REFUSED  {p.path}: {p.error.message}", file=sys.stderr)
        if not approved:
            print("Nothing to apply.")
            if refused:
                sys.exit(1)
            return

        pbar = tqdm(total=len(approved), unit="file", desc="Writing")

        def _progress(path: str, error) -> None:
            pbar.set_postfix_str(os.path.basename(path), refresh=False)
            pbar.update(1)

        try:
            result = session.apply(approved, progress=_progress)
        finally:
            pbar.close()

    print(f"\nApply complete: {result.summary()}")
    for path, backup in result.backups.items():
        print(f"  backup   {path} -> {os.path.basename(backup)}")
    for path, error in result.failed:
        print(f"  FAILED   {path}: {error.message}", file=sys.stderr)
        if error.suggestion:
            print(f"           {error.suggestion}", file=sys.stderr)
    for path, fallback in result.fallbacks.items():
        print(f"  saved    {path} -> {fallback}")

    if result.failed or refused:
        sys.exit(1)


def _cmd_watch(args: argparse.Namespace) -> None:
    """Print external changes under the root until interrupted."""
    config = _load_config(args)
    root = _require_root(args.root)
    changes = ChangeQueue()
    with ApplySession(root, config) as session:
        monitor = session.watch(changes)
        if monitor.is_degraded:
            print(f"Cannot watch {root}: {monitor.init_error.message}", file=sys.stderr)
            sys.exit(1)
        print(f"Watching {monitor.root} (Ctrl+C to stop)")
        try:
            while True:
                change_set = changes.get(timeout=0.5)
                if change_set is None:
                    continue
                rel = change_set.relative_to(monitor.root)
                for label, paths in (("added", rel.added), ("removed", rel.removed),
                                     ("modified", rel.modified)):
                    for path in sorted(paths):
                        print(f"  {label:<9} {path}")
        except KeyboardInterrupt:
            print("\nWatcher stopped.")


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="promptapply",
        description="Apply file updates from language-model output safely",
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", default=None, help="Path to a .promptapply.yaml file")

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    # --- parse ---
    parse_p = subparsers.add_parser("parse", parents=[common],
                                    help="List the file updates in a response")
    parse_p.add_argument("response", help="Response file, or - for stdin")
    parse_p.add_argument("--json", action="store_true", help="Machine-readable JSON output")
    parse_p.set_defaults(func=_cmd_parse)

    # --- diff ---
    diff_p = subparsers.add_parser("diff", parents=[common],
                                   help="Preview the diff of each update")
    diff_p.add_argument("response", help="Response file, or - for stdin")
    diff_p.add_argument("--root", default=".", help="Directory the paths are relative to")
    diff_p.add_argument("--no-color", dest="no_color", action="store_true",
                        help="Disable ANSI colors")
    diff_p.set_defaults(func=_cmd_diff)

    # --- apply ---
    apply_p = subparsers.add_parser("apply", parents=[common],
                                    help="Review and write the updates")
    apply_p.add_argument("response", help="Response file, or - for stdin")
    apply_p.add_argument("--root", default=".", help="Directory the paths are relative to")
    apply_p.add_argument("--yes", "-y", action="store_true",
                         help="Approve every changed file without asking")
    apply_p.add_argument("--tui", action="store_true",
                         help="Review in a full-screen viewer instead of the console")
    apply_p.add_argument("--no-backup", dest="no_backup", action="store_true",
                         help="Do not keep .backup-* copies of overwritten files")
    apply_p.add_argument("--fallback-dir", dest="fallback_dir", default=None,
                         help="Save content here when the root is not writable")
    apply_p.add_argument("--workers", type=int, default=None,
                         help="Concurrent writes (default: from config)")
    apply_p.add_argument("--no-color", dest="no_color", action="store_true",
                         help="Disable ANSI colors")
    apply_p.set_defaults(func=_cmd_apply)

    # --- watch ---
    watch_p = subparsers.add_parser("watch", parents=[common],
                                    help="Report external changes under a directory")
    watch_p.add_argument("--root", default=".", help="Directory to watch")
    watch_p.set_defaults(func=_cmd_watch)

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main(argv: Optional[list[str]] = None) -> None:
    """Entry point for the ``promptapply`` console script."""
    # Console shows warnings only; the log file gets everything.
    if not logging.root.handlers:
        handler = logging.StreamHandler()
        handler.setLevel(logging.WARNING)
        handler.setFormatter(logging.Formatter("%(levelname)s  %(name)s  %(message)s"))
        logging.root.addHandler(handler)

    parser = _build_parser()
    args = parser.parse_args(argv)
    args.func(args)


if __name__ == "__main__":
    main()
