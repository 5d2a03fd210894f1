"""Parse model output, diff it against disk and write it back safely."""

from .response_parser import BlockVariant, ResponseParser, parse_response
from .line_diff import DiffEngine, diff_stats, split_lines
from .file_writer import SafeFileWriter

__all__ = [
    "BlockVariant", "ResponseParser", "parse_response",
    "DiffEngine", "diff_stats", "split_lines",
    "SafeFileWriter",
]
