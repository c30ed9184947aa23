"""Utility functions for pawfeeds runtime paths and helpers."""

import os
from pathlib import Path
from typing import Any

DATA_DIR_NAME = ".pawfeeds"

SENSITIVE_KEYS = {
    "pass",
    "password",
    "token",
    "auth_token",
    "authorization",
}


def ensure_dir(path: Path) -> Path:
    """Ensure a directory exists, creating it if necessary."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_path() -> Path:
    """
    Get the runtime data directory.

    `PAWFEEDS_DATA_DIR` overrides the default `~/.pawfeeds`.
    """
    env_path = str(os.environ.get("PAWFEEDS_DATA_DIR") or "").strip()
    if env_path:
        return ensure_dir(Path(env_path).expanduser())
    return ensure_dir(Path.home() / DATA_DIR_NAME)


def last_path_segment(path: str) -> str:
    """Return the trailing `/`-separated segment of a resource path, or ""."""
    text = str(path or "").strip().rstrip("/")
    if "/" not in text:
        return ""
    return text.rsplit("/", 1)[1]


def mask_value(value: Any, *, keep_prefix: int = 2, keep_suffix: int = 2) -> str:
    text = str(value or "")
    if not text:
        return ""
    if len(text) <= keep_prefix + keep_suffix:
        return "*" * len(text)
    return f"{text[:keep_prefix]}{'*' * (len(text) - keep_prefix - keep_suffix)}{text[-keep_suffix:]}"


def redact_sensitive_map(data: dict[str, Any]) -> dict[str, Any]:
    """Mask credential-like values before printing or logging a mapping."""
    output: dict[str, Any] = {}
    for key, value in data.items():
        if str(key).strip().lower() in SENSITIVE_KEYS:
            output[key] = mask_value(value)
        elif isinstance(value, dict):
            output[key] = redact_sensitive_map(value)
        else:
            output[key] = value
    return output
