"""Utility functions for scribe."""

import os
import re
import time
from pathlib import Path


def ensure_dir(path: Path) -> Path:
    """Ensure a directory exists, creating it if necessary."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_path() -> Path:
    """Get the scribe data directory.

    Respects SCRIBE_HOME environment variable; falls back to ~/.scribe.
    """
    scribe_home = os.environ.get("SCRIBE_HOME", "").strip()
    if scribe_home:
        return ensure_dir(Path(scribe_home).expanduser())
    return ensure_dir(Path.home() / ".scribe")


def get_vectors_path() -> Path:
    """Get the server plugin vector database directory (~/.scribe/db)."""
    return ensure_dir(get_data_path() / "db")


def now_ms() -> int:
    """Current wall-clock time as epoch milliseconds."""
    return int(time.time() * 1000)


def truncate_string(s: str, max_len: int = 100, suffix: str = "...") -> str:
    """Truncate a string to max length, adding suffix if truncated."""
    if len(s) <= max_len:
        return s
    return s[: max_len - len(suffix)] + suffix


def safe_user_handle(handle: str) -> str:
    """Reduce a user handle to characters that are safe in a directory name."""
    return re.sub(r"[^a-zA-Z0-9_-]", "_", handle or "") or "default-user"
