"""Read current file content under the bound root for diff previews."""

from __future__ import annotations

import logging
import os
from typing import Optional

from .errors import FileTooLarge, from_os_error
from .paths import resolve_under_root

logger = logging.getLogger(__name__)

DEFAULT_MAX_FILE_SIZE = 10_000_000


class RootFileReader:
    """Root-bounded text reader.

    Paths go through the same validation as the writer, so a preview can
    never read outside the root either.
    """

    def __init__(self, root: str, max_file_size: int = DEFAULT_MAX_FILE_SIZE) -> None:
        self.root = os.path.realpath(root)
        self.max_file_size = max_file_size

    def read(self, relative_path: str) -> Optional[str]:
        """Return the file's text, or None if it does not exist yet."""
        path = resolve_under_root(self.root, relative_path)
        if not os.path.isfile(path):
            return None
        try:
            size = os.path.getsize(path)
            if size > self.max_file_size:
                raise FileTooLarge(relative_path, size, self.max_file_size)
            with open(path, "rb") as f:
                data = f.read()
        except OSError as exc:
            raise from_os_error(exc, relative_path) from exc
        logger.debug("[Reader] Read %s (%d bytes)", relative_path, len(data))
        return data.decode("utf-8", errors="replace")
