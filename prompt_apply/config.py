"""
Configuration: loads settings from .promptapply.yaml, environment variables,
and built-in defaults (in that priority order: CLI args > env > YAML > defaults).
"""

import os

import yaml


_DEFAULTS = {
    "max_file_size": 10_000_000,
    "backup_enabled": True,
    "write_workers": 4,
    "diff_workers": 4,
    "diff_max_lines": 50_000,
    "diff_max_edit_distance": 1_000,
    "watch_debounce_seconds": 0.25,
    "watch_settle_seconds": 2.0,
    "excluded_dirs": [".git", "node_modules", "dist", "build"],
    "fallback_dir": "",
    "log_dir": ".promptapply/logs",
    "log_buffer_max_lines": 5_000,
    "log_buffer_max_chars": 500_000,
}

# Config file search locations
_CONFIG_FILENAMES = [".promptapply.yaml", ".promptapply.yml"]


def _find_config_file(explicit_path: str | None = None) -> str | None:
    """Find the config file. Checks explicit path, CWD, then user home."""
    if explicit_path:
        if os.path.isfile(explicit_path):
            return explicit_path
        return None

    search_dirs = [os.getcwd(), os.path.expanduser("~")]
    for d in search_dirs:
        for name in _CONFIG_FILENAMES:
            path = os.path.join(d, name)
            if os.path.isfile(path):
                return path
    return None


def _load_yaml(path: str) -> dict:
    """Load YAML file, returns empty dict on failure."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return data if isinstance(data, dict) else {}
    except (OSError, yaml.YAMLError):
        return {}


class Config:
    """Application configuration.

    Settings are resolved in priority order:
    1. CLI arguments (handled by caller)
    2. Environment variables (``PROMPTAPPLY_*``)
    3. .promptapply.yaml config file
    4. Built-in defaults
    """

    def __init__(self, yaml_data: dict | None = None):
        yd = yaml_data or {}

        # Helper: env var > yaml > default
        def _get(env_key: str, yaml_key: str, default, cast=str):
            env_val = os.getenv(env_key)
            if env_val is not None:
                return cast(env_val)
            yaml_val = yd.get(yaml_key)
            if yaml_val is not None:
                return cast(yaml_val)
            return default

        def _get_bool(env_key: str, yaml_key: str, default: bool) -> bool:
            env_val = os.getenv(env_key)
            if env_val is not None:
                return env_val.lower() in ("1", "true", "yes")
            yaml_val = yd.get(yaml_key)
            if yaml_val is not None:
                return bool(yaml_val)
            return default

        self.MAX_FILE_SIZE = _get("PROMPTAPPLY_MAX_FILE_SIZE", "max_file_size",
                                  _DEFAULTS["max_file_size"], cast=int)
        self.BACKUP_ENABLED = _get_bool("PROMPTAPPLY_BACKUP", "backup_enabled",
                                        _DEFAULTS["backup_enabled"])

        # Bounded worker pools
        self.WRITE_WORKERS = max(1, _get("PROMPTAPPLY_WRITE_WORKERS", "write_workers",
                                         _DEFAULTS["write_workers"], cast=int))
        self.DIFF_WORKERS = max(1, _get("PROMPTAPPLY_DIFF_WORKERS", "diff_workers",
                                        _DEFAULTS["diff_workers"], cast=int))

        # Diff ceilings
        self.DIFF_MAX_LINES = _get("PROMPTAPPLY_DIFF_MAX_LINES", "diff_max_lines",
                                   _DEFAULTS["diff_max_lines"], cast=int)
        self.DIFF_MAX_EDIT_DISTANCE = _get("PROMPTAPPLY_DIFF_MAX_EDIT_DISTANCE",
                                           "diff_max_edit_distance",
                                           _DEFAULTS["diff_max_edit_distance"], cast=int)

        # Change monitor
        self.WATCH_DEBOUNCE_SECONDS = _get("PROMPTAPPLY_WATCH_DEBOUNCE",
                                           "watch_debounce_seconds",
                                           _DEFAULTS["watch_debounce_seconds"], cast=float)
        self.WATCH_SETTLE_SECONDS = _get("PROMPTAPPLY_WATCH_SETTLE",
                                         "watch_settle_seconds",
                                         _DEFAULTS["watch_settle_seconds"], cast=float)
        excluded = yd.get("excluded_dirs", _DEFAULTS["excluded_dirs"])
        if not isinstance(excluded, list):
            excluded = _DEFAULTS["excluded_dirs"]
        self.EXCLUDED_DIRS: frozenset[str] = frozenset(str(d) for d in excluded)

        # Where content goes when the root cannot be written
        fallback = _get("PROMPTAPPLY_FALLBACK_DIR", "fallback_dir",
                        _DEFAULTS["fallback_dir"])
        self.FALLBACK_DIR: str | None = os.path.expanduser(fallback) if fallback else None

        # Logging
        self.LOG_DIR = _get("PROMPTAPPLY_LOG_DIR", "log_dir", _DEFAULTS["log_dir"])
        self.LOG_BUFFER_MAX_LINES = _get("PROMPTAPPLY_LOG_BUFFER_MAX_LINES",
                                         "log_buffer_max_lines",
                                         _DEFAULTS["log_buffer_max_lines"], cast=int)
        self.LOG_BUFFER_MAX_CHARS = _get("PROMPTAPPLY_LOG_BUFFER_MAX_CHARS",
                                         "log_buffer_max_chars",
                                         _DEFAULTS["log_buffer_max_chars"], cast=int)

    @classmethod
    def load(cls, config_path: str | None = None) -> "Config":
        """Load config from YAML file (if found) + env vars + defaults."""
        path = _find_config_file(config_path)
        yaml_data = _load_yaml(path) if path else {}
        return cls(yaml_data)
