"""Directory scanning with ignore rules and deterministic ordering."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from hcpcore.ignore import IgnoreMatcher
from hcpcore.security import SecurityLimits

logger = logging.getLogger(__name__)


class ScanError(Exception):
    """Fatal scan failure: the root or a directory beneath it cannot be read."""

    def __init__(self, message: str, processed: int = 0) -> None:
        super().__init__(message)
        self.processed = processed


@dataclass(frozen=True)
class FileFailure:
    """A single file left out of the scan, with the reason."""

    path: str
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {"path": self.path, "reason": self.reason}


def path_sort_key(rel_path: str) -> bytes:
    """Byte-wise ordering key for root-relative paths."""
    return rel_path.encode("utf-8", "surrogateescape")


def _is_decodable(name: str) -> bool:
    try:
        name.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


def _printable(rel_path: str) -> str:
    return path_sort_key(rel_path).decode("utf-8", "replace")


@dataclass
class ScanResult:
    """Files found under a root, sorted by relative path."""

    root: Path
    entries: list[tuple[str, Path]] = field(default_factory=list)
    failures: list[FileFailure] = field(default_factory=list)

    @property
    def files(self) -> list[Path]:
        """Full paths in sorted relative-path order."""
        return [path for _, path in self.entries]

    @property
    def rel_paths(self) -> list[str]:
        return [rel for rel, _ in self.entries]

    def __len__(self) -> int:
        return len(self.entries)


class DirectoryScanner:
    """Walks a root, pruning ignored directories, and lists regular files.

    Unreadable directories abort the scan with ScanError. A file that cannot
    be inspected, or exceeds the size limit, is recorded as a FileFailure and
    the scan continues. Symbolic links are never followed.
    """

    def __init__(
        self,
        matcher: IgnoreMatcher | None = None,
        limits: SecurityLimits | None = None,
    ) -> None:
        self.matcher = matcher or IgnoreMatcher()
        self.limits = limits or SecurityLimits()

    def scan(self, root: Path) -> ScanResult:
        """Scan root and return its files sorted by relative path.

        Raises:
            ScanError: If the root is not a readable directory, a directory
                cannot be listed, or the file count limit is exceeded
        """
        root = Path(root)
        if not root.is_dir():
            raise ScanError(f"Scan root is not a directory: {root}")

        result = ScanResult(root=root)
        self._walk(root, "", result)
        result.entries.sort(key=lambda item: path_sort_key(item[0]))

        logger.debug(
            "Scanned %s: %d files, %d failures",
            root, len(result.entries), len(result.failures),
        )
        return result

    def _walk(self, directory: Path, rel_dir: str, result: ScanResult) -> None:
        try:
            with os.scandir(directory) as it:
                entries = list(it)
        except OSError as e:
            raise ScanError(f"Cannot read directory {directory}: {e}") from e

        for entry in entries:
            rel_path = f"{rel_dir}/{entry.name}" if rel_dir else entry.name

            if self.matcher.is_ignored(rel_path):
                logger.debug("Ignored: %s", rel_path)
                continue

            if not _is_decodable(entry.name):
                shown = _printable(rel_path)
                logger.warning("Skipping %s: undecodable file name", shown)
                result.failures.append(FileFailure(shown, "undecodable file name"))
                continue

            try:
                if entry.is_dir(follow_symlinks=False):
                    self._walk(Path(entry.path), rel_path, result)
                    continue

                if not entry.is_file(follow_symlinks=False):
                    logger.debug("Skipping non-regular file: %s", rel_path)
                    continue

                size = entry.stat(follow_symlinks=False).st_size
            except OSError as e:
                logger.warning("Cannot inspect %s: %s", rel_path, e)
                result.failures.append(FileFailure(rel_path, str(e)))
                continue

            if size > self.limits.max_file_size:
                reason = f"file too large ({size} bytes > {self.limits.max_file_size})"
                logger.warning("Skipping %s: %s", rel_path, reason)
                result.failures.append(FileFailure(rel_path, reason))
                continue

            result.entries.append((rel_path, Path(entry.path)))
            if len(result.entries) > self.limits.max_files:
                raise ScanError(
                    f"Too many files under {result.root}: > {self.limits.max_files}",
                    processed=len(result.entries),
                )
