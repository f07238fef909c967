"""Per-file dual hashing and the global content hash.

Every scanned file gets a raw SHA-256 of its bytes and, when its language
is supported, a logic fingerprint. The content hash folds only the
``(path, raw_hash)`` pairs, in path order, into one SHA-256; logic
fingerprints never enter it.
"""

from __future__ import annotations

import hashlib
import logging
import threading
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from hcpcore.canonical import OrderedObject
from hcpcore.fingerprint import FingerprinterRegistry, ParseError, default_registry
from hcpcore.ignore import IgnoreMatcher
from hcpcore.scanner import DirectoryScanner, FileFailure, ScanError, path_sort_key
from hcpcore.security import SecurityLimits

logger = logging.getLogger(__name__)

CHUNK_SIZE = 8192


@dataclass(frozen=True)
class Asset:
    """One file of a manifest."""

    path: str
    raw_hash: str
    logic_hash: str | None = None

    def to_payload(self) -> OrderedObject:
        """Wire form in fixed field order, empty logic_hash omitted."""
        payload = OrderedObject(path=self.path, raw_hash=self.raw_hash)
        if self.logic_hash:
            payload["logic_hash"] = self.logic_hash
        return payload

    def to_dict(self) -> dict[str, Any]:
        return dict(self.to_payload())

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Asset:
        return cls(
            path=data["path"],
            raw_hash=data["raw_hash"],
            logic_hash=data.get("logic_hash") or None,
        )


def hash_file(path: Path) -> str:
    """Stream a file through SHA-256 and return the lowercase hex digest."""
    hasher = hashlib.sha256()
    with open(path, "rb") as f:
        while chunk := f.read(CHUNK_SIZE):
            hasher.update(chunk)
    return hasher.hexdigest()


def aggregate_content_hash(assets: Iterable[Asset]) -> str:
    """Fold path-sorted assets into the content hash.

    Each asset contributes its UTF-8 path followed by its lowercase hex raw
    hash, with no delimiters.

    Raises:
        ValueError: If assets are not strictly ascending by path
    """
    hasher = hashlib.sha256()
    previous: bytes | None = None
    for asset in assets:
        key = path_sort_key(asset.path)
        if previous is not None and key <= previous:
            raise ValueError(
                f"Assets must be sorted by path without duplicates: {asset.path!r}"
            )
        previous = key
        hasher.update(key)
        hasher.update(asset.raw_hash.lower().encode("ascii"))
    return hasher.hexdigest()


class DualHasher:
    """Builds Asset records: raw hash always, logic hash when supported."""

    def __init__(self, registry: FingerprinterRegistry | None = None) -> None:
        self.registry = registry or default_registry()

    def logic_hash(self, rel_path: str, path: Path) -> str | None:
        """Logic fingerprint, or None when unsupported or unparseable."""
        fingerprinter = self.registry.for_path(rel_path)
        if fingerprinter is None:
            return None
        try:
            return fingerprinter.fingerprint(path)
        except ParseError as e:
            logger.debug("No logic hash for %s: %s", rel_path, e)
            return None

    def hash_asset(self, rel_path: str, path: Path) -> Asset:
        """Hash one file.

        Raises:
            OSError: If the file cannot be read
        """
        return Asset(
            path=rel_path,
            raw_hash=hash_file(path),
            logic_hash=self.logic_hash(rel_path, path),
        )

    def _hash_one(
        self,
        entry: tuple[str, Path],
        cancel: threading.Event | None,
    ) -> Asset | FileFailure | None:
        if cancel is not None and cancel.is_set():
            return None
        rel_path, path = entry
        try:
            return self.hash_asset(rel_path, path)
        except OSError as e:
            logger.warning("Cannot read %s: %s", rel_path, e)
            return FileFailure(rel_path, str(e))

    def hash_files(
        self,
        entries: Sequence[tuple[str, Path]],
        workers: int = 1,
        cancel: threading.Event | None = None,
    ) -> tuple[list[Asset], list[FileFailure]]:
        """Hash (relative path, full path) entries.

        Files are independent, so with ``workers > 1`` they are hashed on a
        thread pool; the returned assets are always sorted by path.

        Args:
            entries: Files to hash
            workers: Thread count
            cancel: Event that stops remaining hashing when set

        Returns:
            Tuple of (sorted assets, read failures)

        Raises:
            ScanError: If cancel was set before every file was hashed
        """
        if workers > 1:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="hcp-hash") as pool:
                results = list(pool.map(lambda entry: self._hash_one(entry, cancel), entries))
        else:
            results = [self._hash_one(entry, cancel) for entry in entries]

        assets = [r for r in results if isinstance(r, Asset)]
        failures = [r for r in results if isinstance(r, FileFailure)]
        done = len(assets) + len(failures)
        if done < len(entries):
            raise ScanError(
                f"Hashing cancelled after {done} of {len(entries)} files",
                processed=done,
            )

        assets.sort(key=lambda a: path_sort_key(a.path))
        failures.sort(key=lambda f: path_sort_key(f.path))
        return assets, failures


@dataclass
class TreeDigest:
    """Result of scanning and hashing one directory tree."""

    root: Path
    content_hash: str
    assets: list[Asset] = field(default_factory=list)
    failures: list[FileFailure] = field(default_factory=list)

    @property
    def asset_map(self) -> dict[str, Asset]:
        return {asset.path: asset for asset in self.assets}

    def to_dict(self) -> dict[str, Any]:
        return {
            "root": str(self.root),
            "content_hash": self.content_hash,
            "assets": [asset.to_dict() for asset in self.assets],
            "failures": [failure.to_dict() for failure in self.failures],
        }


def digest_tree(
    root: Path,
    matcher: IgnoreMatcher | None = None,
    hasher: DualHasher | None = None,
    limits: SecurityLimits | None = None,
    workers: int = 1,
    cancel: threading.Event | None = None,
) -> TreeDigest:
    """Scan a directory, hash every file and aggregate the content hash.

    Raises:
        ScanError: If the root or a directory cannot be read, or hashing
            was cancelled
    """
    scan = DirectoryScanner(matcher=matcher, limits=limits).scan(root)
    hasher = hasher or DualHasher()
    assets, read_failures = hasher.hash_files(scan.entries, workers=workers, cancel=cancel)

    failures = sorted([*scan.failures, *read_failures], key=lambda f: path_sort_key(f.path))
    content_hash = aggregate_content_hash(assets)
    logger.debug("Content hash for %s: %s (%d assets)", root, content_hash, len(assets))

    return TreeDigest(
        root=Path(root),
        content_hash=content_hash,
        assets=assets,
        failures=failures,
    )
