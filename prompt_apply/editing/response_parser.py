"""
Response parser: turns raw model output into :class:`FileUpdate` records.

Two surface forms are accepted:

* a JSON array ``[{"fileName"|"path": ..., "code"|"content": ...}, ...]``,
  which takes absolute precedence when the input starts with ``[``;
* Markdown fenced code blocks, classified by an explicit grammar of
  tagged variants (see :class:`BlockVariant`), plus the plain-text
  ``// name … // --- End of name ---`` format produced by dropping files
  into the input pane.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional, Union

from ..errors import ParseFailure
from ..language import MAX_LANGUAGE_TAG_LENGTH, resolve_language
from ..models import FileUpdate, Operation

logger = logging.getLogger(__name__)


class BlockVariant(IntEnum):
    """Supported conventions, in priority order (lower wins on duplicate paths)."""
    LANGUAGE_THEN_FILENAME = 1    # ```swift\nMyFile.swift\n...```
    COMMENT_FILENAME = 2          # ```js\n// app.js\n...```
    LANGUAGE_COLON_FILENAME = 3   # ```javascript:utils.js\n...```
    BARE_FILENAME = 4             # ```\nconfig.json\n...```
    DROPPED_FILE = 5              # // a.swift\n\n...\n\n// --- End of a.swift ---


MAX_FILENAME_LENGTH = 100

# Compiled once; every parse() call reuses them.
_FENCE_RE = re.compile(
    r"^([ \t]*)```[ \t]*([^\n`]*?)[ \t]*\n(.*?)^[ \t]*```[ \t]*$",
    re.MULTILINE | re.DOTALL,
)
_FILENAME_RE = re.compile(r"^[\w\-./\\]+$")
_LANGUAGE_TAG_RE = re.compile(r"^[A-Za-z][\w+#\-]*$")
_COLON_HEADER_RE = re.compile(r"^([A-Za-z][\w+#\-]*):[ \t]*(\S+)$")
_COMMENT_FILENAME_RE = re.compile(
    r"^(?://|#|--)[ \t]*(?:file(?:name)?[ \t]*:[ \t]*)?(\S+)[ \t]*$",
    re.IGNORECASE,
)
_DROPPED_FILE_RE = re.compile(
    r"^// ([^\n]+?)[ \t]*\n\n(.*?)\n\n// --- End of \1 ---",
    re.MULTILINE | re.DOTALL,
)
_NEWLINES_RE = re.compile(r"\r\n?")

_PATH_KEYS = ("fileName", "path")
_CONTENT_KEYS = ("code", "content")
_OPERATION_KEYS = ("operation", "action")


@dataclass(frozen=True)
class _Candidate:
    variant: BlockVariant
    position: int
    update: FileUpdate


def _clean_filename(raw: str) -> str:
    """Strip decoration models wrap around file names (backticks, quotes, ``./``)."""
    name = raw.strip().strip("`'\"").rstrip(":").strip()
    while name.startswith("./"):
        name = name[2:]
    return name


def _is_filename(candidate: str) -> bool:
    return (
        0 < len(candidate) < MAX_FILENAME_LENGTH
        and "." in candidate
        and not candidate.endswith(".")
        and not candidate.startswith("//")
        and _FILENAME_RE.match(candidate) is not None
    )


def _is_language_tag(candidate: str) -> bool:
    return (
        0 < len(candidate) < MAX_LANGUAGE_TAG_LENGTH
        and _LANGUAGE_TAG_RE.match(candidate) is not None
    )


def _clean_content(body: str) -> str:
    """Drop leading blank lines and trailing whitespace; end with one newline."""
    body = body.lstrip("\n").rstrip()
    return body + "\n" if body else ""


def _split_first_line(body: str) -> tuple[str, str]:
    first, _, rest = body.partition("\n")
    return first.strip(), rest


def _dedent(body: str, indent: str) -> str:
    if not indent:
        return body
    lines = body.split("\n")
    return "\n".join(l[len(indent):] if l.startswith(indent) else l.lstrip(" \t") for l in lines)


class ResponseParser:
    """Extract ordered, de-duplicated file updates from model output."""

    def parse(self, text: Union[str, bytes, None]) -> list[FileUpdate]:
        """Parse *text*; never raises, returns ``[]`` when nothing matches."""
        try:
            return self._parse(self._sanitize(text))
        except Exception:
            logger.exception("[Parser] Unexpected failure; returning no updates")
            return []

    @staticmethod
    def _sanitize(text: Union[str, bytes, None]) -> str:
        if text is None:
            return ""
        if isinstance(text, (bytes, bytearray)):
            text = bytes(text).decode("utf-8", errors="replace")
        return _NEWLINES_RE.sub("\n", text.replace("\x00", ""))

    def _parse(self, text: str) -> list[FileUpdate]:
        logger.debug("[Parser] Input length: %d", len(text))
        if not text.strip():
            return []

        if text.lstrip().startswith("["):
            try:
                updates = self.parse_json(text)
                logger.info("[Parser] Decoded %d update(s) from JSON", len(updates))
                return updates
            except ParseFailure as exc:
                logger.info("[Parser] %s. Falling back to fenced blocks.", exc.reason)

        candidates = self._scan_fenced_blocks(text)
        candidates.extend(self._scan_dropped_files(text))
        updates = self._deduplicate(candidates)
        logger.info("[Parser] Found %d file update(s) in %d block(s)",
                    len(updates), len(candidates))
        return updates

    # ------------------------------------------------------------------
    # JSON
    # ------------------------------------------------------------------

    @staticmethod
    def parse_json(text: str) -> list[FileUpdate]:
        """Decode a JSON array of update objects; raises :class:`ParseFailure`."""
        try:
            data = json.loads(text)
        except (json.JSONDecodeError, RecursionError) as exc:
            raise ParseFailure(f"JSON decode failed: {exc}") from exc
        if not isinstance(data, list):
            raise ParseFailure("JSON root is not an array")

        updates: list[FileUpdate] = []
        for index, item in enumerate(data):
            if not isinstance(item, dict):
                raise ParseFailure(f"item {index} is not an object")
            path = next((item[k] for k in _PATH_KEYS if k in item), None)
            if not isinstance(path, str) or not path.strip():
                raise ParseFailure(f"item {index} has no fileName/path")

            raw_op = next((item[k] for k in _OPERATION_KEYS if k in item), Operation.UPDATE.value)
            try:
                operation = Operation(str(raw_op).lower())
            except ValueError as exc:
                raise ParseFailure(f"item {index} has unknown operation {raw_op!r}") from exc

            content = next((item[k] for k in _CONTENT_KEYS if k in item), None)
            if content is None and operation is Operation.DELETE:
                content = ""
            if not isinstance(content, str):
                raise ParseFailure(f"item {index} has no code/content string")

            updates.append(FileUpdate(
                path=path.strip(),
                content=content,
                operation=operation,
                language=resolve_language(
                    item["language"] if isinstance(item.get("language"), str) else None, path),
            ))
        return updates

    # ------------------------------------------------------------------
    # Fenced blocks
    # ------------------------------------------------------------------

    def _scan_fenced_blocks(self, text: str) -> list[_Candidate]:
        candidates: list[_Candidate] = []
        for match in _FENCE_RE.finditer(text):
            indent, info, body = match.group(1), match.group(2).strip(), match.group(3)
            classified = self.classify_block(info, _dedent(body, indent))
            if classified is None:
                logger.debug("[Parser] Skipping fence at %d: no file name", match.start())
                continue
            variant, update = classified
            candidates.append(_Candidate(variant, match.start(), update))
        return candidates

    @staticmethod
    def classify_block(info: str, body: str) -> Optional[tuple[BlockVariant, FileUpdate]]:
        """Match one fenced block against each variant in priority order.

        Blocks with no content after the file name are skipped, so a lone
        ``./setup.sh`` command line never becomes an update.
        """
        first_line, rest = _split_first_line(body)
        content = _clean_content(rest)

        # (1) ```lang  + filename-only first line
        if content and info and ":" not in info and _is_language_tag(info):
            name = _clean_filename(first_line)
            if _is_filename(name):
                return BlockVariant.LANGUAGE_THEN_FILENAME, FileUpdate(
                    name, content, language=resolve_language(info, name))

        # (2) filename in a leading // # -- comment
        comment = _COMMENT_FILENAME_RE.match(first_line)
        if content and comment and (not info or _is_language_tag(info)):
            name = _clean_filename(comment.group(1))
            if _is_filename(name):
                return BlockVariant.COMMENT_FILENAME, FileUpdate(
                    name, content, language=resolve_language(info, name))

        # (3) ```lang:filename
        header = _COLON_HEADER_RE.match(info)
        whole = _clean_content(body)
        if whole and header and _is_language_tag(header.group(1)):
            name = _clean_filename(header.group(2))
            if _is_filename(name):
                return BlockVariant.LANGUAGE_COLON_FILENAME, FileUpdate(
                    name, whole, language=resolve_language(header.group(1), name))

        # (4) bare ``` + filename-only first line
        if content and not info:
            name = _clean_filename(first_line)
            if _is_filename(name):
                return BlockVariant.BARE_FILENAME, FileUpdate(
                    name, content, language=resolve_language(None, name))

        return None

    # ------------------------------------------------------------------
    # Dropped-file delimiters
    # ------------------------------------------------------------------

    @staticmethod
    def _scan_dropped_files(text: str) -> list[_Candidate]:
        fence_spans = [(m.start(), m.end()) for m in _FENCE_RE.finditer(text)]
        candidates: list[_Candidate] = []
        for match in _DROPPED_FILE_RE.finditer(text):
            if any(start <= match.start() < end for start, end in fence_spans):
                continue
            name = _clean_filename(match.group(1))
            if not _is_filename(name):
                continue
            candidates.append(_Candidate(
                BlockVariant.DROPPED_FILE,
                match.start(),
                FileUpdate(name, _clean_content(match.group(2)),
                           language=resolve_language(None, name)),
            ))
        return candidates

    # ------------------------------------------------------------------
    # De-duplication
    # ------------------------------------------------------------------

    @staticmethod
    def _deduplicate(candidates: list[_Candidate]) -> list[FileUpdate]:
        """Keep one update per path: best variant, then earliest position."""
        winners: dict[str, _Candidate] = {}
        for candidate in sorted(candidates, key=lambda c: (c.variant, c.position)):
            path = candidate.update.path
            if path in winners:
                logger.debug("[Parser] Dropping duplicate block for %s (%s)",
                             path, candidate.variant.name)
                continue
            winners[path] = candidate
        return [c.update for c in sorted(winners.values(), key=lambda c: c.position)]


_default_parser = ResponseParser()


def parse_response(text: Union[str, bytes, None]) -> list[FileUpdate]:
    """Module-level convenience wrapper around a shared :class:`ResponseParser`."""
    return _default_parser.parse(text)
