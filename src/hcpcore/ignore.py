"""Ignore rules for directory scanning.

A relative, slash-normalized path is excluded when any pattern
- matches it as a glob over the whole path (``*`` never crosses ``/``),
- equals a contiguous run of its path segments (directory-name ignore), or
- equals its final segment literally.

Any path whose final segment starts with ``.`` is excluded as hidden.
"""

from __future__ import annotations

from collections.abc import Iterable
from fnmatch import fnmatchcase
from pathlib import Path

MANIFEST_EXTENSION = ".hcp"
DEFAULT_IGNORE_FILE = ".hcpignore"

DEFAULT_IGNORE_PATTERNS: tuple[str, ...] = (
    ".git",  # version control
    ".hcp",  # tool metadata
    "node_modules",  # dependency cache
    "__pycache__",  # bytecode cache
    ".DS_Store",  # OS metadata
    f"*{MANIFEST_EXTENSION}",  # manifests themselves
)


def parse_ignore_lines(lines: Iterable[str]) -> list[str]:
    """Extract patterns from ignore-file lines, dropping blanks and comments."""
    patterns = []
    for line in lines:
        stripped = line.strip()
        if stripped and not stripped.startswith("#"):
            patterns.append(stripped)
    return patterns


def load_ignore_file(root: Path, name: str = DEFAULT_IGNORE_FILE) -> list[str]:
    """Read user patterns from ``root/name``; a missing file yields none."""
    path = root / name
    if not path.is_file():
        return []
    with open(path, encoding="utf-8") as f:
        return parse_ignore_lines(f)


def _glob_match(pattern: str, path: str) -> bool:
    pattern_parts = pattern.split("/")
    path_parts = path.split("/")
    if len(pattern_parts) != len(path_parts):
        return False
    return all(fnmatchcase(part, pat) for part, pat in zip(path_parts, pattern_parts))


def _segment_match(pattern: str, segments: list[str]) -> bool:
    wanted = pattern.strip("/").split("/")
    width = len(wanted)
    for start in range(len(segments) - width + 1):
        if segments[start:start + width] == wanted:
            return True
    return False


class IgnoreMatcher:
    """Decides whether a root-relative path is excluded from a scan."""

    def __init__(
        self,
        patterns: Iterable[str] = (),
        include_defaults: bool = True,
    ) -> None:
        merged: list[str] = []
        for pattern in [*patterns, *(DEFAULT_IGNORE_PATTERNS if include_defaults else ())]:
            if pattern and pattern not in merged:
                merged.append(pattern)
        self.patterns: tuple[str, ...] = tuple(merged)

    @classmethod
    def for_root(
        cls,
        root: Path,
        extra_patterns: Iterable[str] = (),
        ignore_file: str = DEFAULT_IGNORE_FILE,
    ) -> IgnoreMatcher:
        """Matcher built from the root's ignore file plus extra patterns."""
        return cls([*load_ignore_file(root, ignore_file), *extra_patterns])

    def is_ignored(self, rel_path: str) -> bool:
        """Check a slash-normalized path relative to the scan root.

        The root itself (empty path or ``.``) is never ignored.
        """
        rel_path = rel_path.replace("\\", "/").strip("/")
        if rel_path in ("", "."):
            return False

        segments = rel_path.split("/")
        if segments[-1].startswith("."):
            return True

        for pattern in self.patterns:
            if _glob_match(pattern, rel_path):
                return True
            if _segment_match(pattern, segments):
                return True
            if pattern == segments[-1]:
                return True
        return False

    def __repr__(self) -> str:
        return f"IgnoreMatcher(patterns={list(self.patterns)!r})"
