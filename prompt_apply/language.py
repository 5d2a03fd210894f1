"""
Language detection for parsed file updates.
"""

import os


# ── Extension → Language mapping ──

EXTENSION_MAP = {
    ".swift": "swift",
    ".js": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".py": "python",
    ".java": "java",
    ".kt": "kotlin",
    ".html": "html",
    ".htm": "html",
    ".css": "css",
    ".scss": "css",
    ".sass": "css",
    ".json": "json",
    ".xml": "xml",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".sh": "shell",
    ".bash": "shell",
    ".rb": "ruby",
    ".go": "go",
    ".rs": "rust",
    ".cpp": "cpp",
    ".cc": "cpp",
    ".cxx": "cpp",
    ".c": "c",
    ".h": "c",
    ".md": "markdown",
}

DEFAULT_LANGUAGE = "text"

# Fence info strings models actually emit → canonical language name
LANGUAGE_ALIASES = {
    "swift": "swift",
    "javascript": "javascript", "js": "javascript", "jsx": "javascript",
    "node": "javascript",
    "typescript": "typescript", "ts": "typescript", "tsx": "typescript",
    "python": "python", "py": "python", "python3": "python",
    "java": "java",
    "kotlin": "kotlin", "kt": "kotlin",
    "html": "html", "htm": "html",
    "css": "css", "scss": "css", "sass": "css",
    "json": "json",
    "xml": "xml",
    "yaml": "yaml", "yml": "yaml",
    "shell": "shell", "sh": "shell", "bash": "shell", "zsh": "shell",
    "console": "shell",
    "ruby": "ruby", "rb": "ruby",
    "go": "go", "golang": "go",
    "rust": "rust", "rs": "rust",
    "cpp": "cpp", "c++": "cpp", "cc": "cpp", "cxx": "cpp",
    "c": "c", "h": "c",
    "sql": "sql",
    "markdown": "markdown", "md": "markdown",
    "text": "text", "txt": "text", "plaintext": "text",
}

MAX_LANGUAGE_TAG_LENGTH = 20


def language_for_filename(filename: str) -> str:
    """Infer a language from *filename*'s extension, ``text`` if unknown."""
    ext = os.path.splitext(filename)[1].lower()
    return EXTENSION_MAP.get(ext, DEFAULT_LANGUAGE)


def normalize_language_tag(tag: str) -> str | None:
    """Canonical language for a fence tag, or None if it is not a known alias."""
    tag = tag.strip().lower()
    if not tag or len(tag) >= MAX_LANGUAGE_TAG_LENGTH:
        return None
    return LANGUAGE_ALIASES.get(tag)


def resolve_language(tag: str | None, filename: str) -> str:
    """Prefer the fence tag; fall back to the extension table."""
    if tag:
        known = normalize_language_tag(tag)
        if known:
            return known
    return language_for_filename(filename)
