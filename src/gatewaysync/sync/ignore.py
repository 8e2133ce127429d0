"""Exclude patterns for file synchronization.

This module provides:
- ExcludePatterns: Doublestar glob matching on relative paths
- DEFAULT_EXCLUDE_PATTERNS: Patterns excluded when no profile is published
"""

from __future__ import annotations

import re
from pathlib import PurePosixPath

# Never copied into the gateway: VCS metadata and gateway-owned resource caches
DEFAULT_EXCLUDE_PATTERNS = [
    "**/.git/**",
    "**/.git",
    "**/.gitkeep",
    "**/.resources/**",
    "**/.resources",
]


def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """Compile a glob into a regex matched against a whole relative path.

    ``*`` and ``?`` stop at ``/``; ``**`` crosses directories and ``**/``
    also matches zero directories.
    """
    out: list[str] = []
    i, n = 0, len(pattern)
    while i < n:
        c = pattern[i]
        if c == "*":
            if pattern.startswith("**", i):
                i += 2
                if i < n and pattern[i] == "/":
                    out.append("(?:.*/)?")
                    i += 1
                else:
                    out.append(".*")
                continue
            out.append("[^/]*")
        elif c == "?":
            out.append("[^/]")
        elif c == "[":
            end = pattern.find("]", i + 1)
            if end == -1:
                out.append(re.escape(c))
            else:
                body = pattern[i + 1 : end].replace("\\", "\\\\")
                if body.startswith("!"):
                    body = "^" + body[1:]
                out.append(f"[{body}]")
                i = end + 1
                continue
        else:
            out.append(re.escape(c))
        i += 1
    return re.compile("".join(out) + r"\Z")


class ExcludePatterns:
    """Handles exclude pattern matching for relative paths.

    Patterns containing a ``/`` are matched against the full relative path;
    patterns without one are also matched against the final path component,
    like gitignore entries.
    """

    def __init__(self, patterns: list[str] | None = None) -> None:
        """Initialize with patterns.

        Args:
            patterns: List of glob patterns.
        """
        self._compiled: list[tuple[re.Pattern[str], bool]] = []
        for pattern in patterns or []:
            self.add_pattern(pattern)

    def add_pattern(self, pattern: str) -> None:
        """Add an exclude pattern."""
        pattern = pattern.strip()
        if not pattern:
            return
        basename_only = "/" not in pattern.rstrip("/")
        self._compiled.append((glob_to_regex(pattern.rstrip("/")), basename_only))

    def matches(self, rel_path: str) -> bool:
        """Check if a relative path is excluded.

        Args:
            rel_path: Path relative to the mapping root, "/" or OS separated.

        Returns:
            True if any pattern matches.
        """
        rel_str = rel_path.replace("\\", "/").strip("/")
        if not rel_str or rel_str == ".":
            return False
        name = PurePosixPath(rel_str).name

        for regex, basename_only in self._compiled:
            if regex.match(rel_str):
                return True
            if basename_only and regex.match(name):
                return True
        return False

