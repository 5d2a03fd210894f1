"""
Error taxonomy for the ingest → diff → apply pipeline.

Parsing and diffing never raise these to callers; the writer collects them
per path into a :class:`~prompt_apply.models.BatchResult`, and the monitor
records :class:`WatcherInitError` instead of raising it.
"""

from __future__ import annotations

import errno
from enum import Enum
from typing import Optional


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class PromptApplyError(Exception):
    """Base class for every error raised inside prompt_apply."""

    severity: Severity = Severity.ERROR
    recoverable: bool = True
    suggestion: str = ""

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.path = path
        # Set by the writer when the content was saved elsewhere instead.
        self.fallback_path: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "type": type(self).__name__,
            "message": self.message,
            "path": self.path,
            "severity": self.severity.value,
            "recoverable": self.recoverable,
            "suggestion": self.suggestion,
        }


class ParseFailure(PromptApplyError):
    """Raised internally when one surface grammar fails; never escapes parse()."""

    severity = Severity.INFO
    suggestion = "Ensure the response contains properly formatted code blocks with ```"

    def __init__(self, reason: str) -> None:
        super().__init__(f"Failed to parse response: {reason}")
        self.reason = reason


class PathTraversalAttempt(PromptApplyError):
    severity = Severity.CRITICAL
    recoverable = False
    suggestion = "Use only relative paths within the selected folder"

    def __init__(self, path: str, detail: str = "") -> None:
        message = f"Path traversal attempt detected in: {path}"
        if detail:
            message += f" ({detail})"
        super().__init__(message, path)


class InvalidPath(PromptApplyError):
    severity = Severity.WARNING
    suggestion = "Provide a non-empty relative file path"

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Invalid path {path!r}: {reason}", path)


class FileTooLarge(PromptApplyError):
    suggestion = "Exclude large files or raise max_file_size in the config"

    def __init__(self, path: str, size: int, limit: int) -> None:
        size_mb = size / 1_048_576
        super().__init__(f"File too large: {path} ({size_mb:.1f} MB)", path)
        self.size = size
        self.limit = limit


class FileAccessDenied(PromptApplyError):
    suggestion = "Check file permissions and try again"

    def __init__(self, path: str) -> None:
        super().__init__(f"Access denied to file: {path}", path)


class FileNotFound(PromptApplyError):
    suggestion = "Verify the file exists and the path is correct"

    def __init__(self, path: str) -> None:
        super().__init__(f"File not found: {path}", path)


class FileWriteError(PromptApplyError):
    suggestion = "Check disk space and file permissions"

    def __init__(self, path: str, underlying: BaseException) -> None:
        super().__init__(f"Failed to write {path}: {underlying}", path)
        self.underlying = underlying


class BackupFailed(PromptApplyError):
    suggestion = "Check disk space and permissions next to the original file"

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Backup failed for {path}: {reason}", path)


class WatcherInitError(PromptApplyError):
    severity = Severity.WARNING
    suggestion = "Change monitoring is disabled; refresh manually"

    def __init__(self, root: str, reason: str) -> None:
        super().__init__(f"Cannot watch {root}: {reason}", root)


def from_os_error(exc: OSError, path: str) -> PromptApplyError:
    """Map an :class:`OSError` onto the taxonomy."""
    if isinstance(exc, PermissionError) or exc.errno in (errno.EACCES, errno.EPERM, errno.EROFS):
        return FileAccessDenied(path)
    if isinstance(exc, FileNotFoundError):
        return FileNotFound(path)
    return FileWriteError(path, exc)
