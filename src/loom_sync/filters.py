"""Relevance filtering for raw filesystem events.

Everything here is a pure function of its arguments so it can be called from
the watcher thread and the event loop alike.
"""

import re
from functools import lru_cache
from pathlib import PurePosixPath

from .constants import TRANSIENT_NAMES, TRANSIENT_SUFFIXES, VCS_METADATA_DIRS


def normalize_path(path: str) -> str:
    """Converts a vault-relative path to the POSIX form used for matching."""
    normalized = path.replace("\\", "/")
    while normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized.lstrip("/")


@lru_cache(maxsize=256)
def _compile_glob(pattern: str) -> re.Pattern[str]:
    """Translates a glob into an anchored regex.

    '*' matches any run of characters (including '/'), '?' matches a single
    character and everything else is literal.
    """
    parts = []
    for char in pattern:
        if char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("".join(parts), re.DOTALL)


def matches_pattern(path: str, pattern: str) -> bool:
    """Returns True if the whole path matches the glob pattern."""
    return _compile_glob(pattern).fullmatch(path) is not None


def is_system_path(path: str) -> bool:
    """Checks the fixed rules: VCS metadata and transient editor/OS files."""
    parts = PurePosixPath(path).parts
    if any(part in VCS_METADATA_DIRS for part in parts):
        return True

    name = parts[-1] if parts else ""
    if name in TRANSIENT_NAMES or name.startswith(".#"):
        return True
    return name.endswith(TRANSIENT_SUFFIXES)


def should_sync(path: str, exclude_patterns: list[str] | tuple[str, ...]) -> bool:
    """Decides whether a change to `path` should reach version control.

    Args:
        path (str): Vault-relative path of the changed file.
        exclude_patterns (list[str]): Configured glob patterns, in order.

    Returns:
        bool: False if the path matches any pattern or a fixed system rule.
    """
    normalized = normalize_path(path)
    if not normalized:
        return False

    for pattern in exclude_patterns:
        if matches_pattern(normalized, pattern):
            return False

    return not is_system_path(normalized)
