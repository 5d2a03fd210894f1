"""
prompt_apply: turn language-model output into reviewed, safe file writes.

Public API for library usage::

    from prompt_apply import ApplySession

    with ApplySession("/path/to/project") as session:
        updates = session.parse(response_text)
        result = session.apply(updates)
"""

from .config import Config
from .editing import DiffEngine, ResponseParser, SafeFileWriter, parse_response
from .errors import PromptApplyError
from .models import BatchResult, ChangeSet, DiffLine, DiffResult, FileUpdate, Operation
from .monitor import ChangeMonitor, ChangeQueue
from .reader import RootFileReader
from .session import ApplySession

__all__ = [
    "ApplySession", "Config",
    "ResponseParser", "parse_response", "DiffEngine", "SafeFileWriter",
    "ChangeMonitor", "ChangeQueue", "RootFileReader",
    "FileUpdate", "Operation", "DiffLine", "DiffResult", "ChangeSet", "BatchResult",
    "PromptApplyError",
]
