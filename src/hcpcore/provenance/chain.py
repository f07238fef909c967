"""Provenance chain: backward links between successive manifests.

A manifest's ``parent_hash`` is the SHA-256 of the previous manifest
file's bytes. Nothing records where ancestors live, so walking a chain
needs a resolver that knows where to look.
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Protocol

from hcpcore.ignore import MANIFEST_EXTENSION
from hcpcore.provenance.manifest import Manifest, ManifestFormatError
from hcpcore.security import SecurityError, SecurityLimits, check_path_safety

logger = logging.getLogger(__name__)


def manifest_file_digest(path: Path) -> str:
    """Parent link value for a manifest file: SHA-256 of its bytes."""
    return hashlib.sha256(Path(path).read_bytes()).hexdigest()


def parent_hash_for(path: Path) -> str | None:
    """Parent link for a new manifest superseding ``path``, if it exists."""
    path = Path(path)
    if not path.is_file():
        return None
    return manifest_file_digest(path)


class ChainResolver(Protocol):
    def resolve(self, parent_hash: str) -> Manifest | None:
        """Manifest whose file digest is parent_hash, or None."""
        ...


class DirectoryChainResolver:
    """Resolves parent links among manifest files under given directories."""

    def __init__(
        self,
        directories: Iterable[Path],
        pattern: str = f"*{MANIFEST_EXTENSION}",
        limits: SecurityLimits | None = None,
    ) -> None:
        self.directories = [Path(d) for d in directories]
        self.pattern = pattern
        self.limits = limits
        self._index: dict[str, Path] | None = None

    def _build_index(self) -> dict[str, Path]:
        index: dict[str, Path] = {}
        for directory in self.directories:
            for path in sorted(directory.rglob(self.pattern)):
                if not path.is_file():
                    continue
                try:
                    check_path_safety(path, directory)
                except SecurityError as e:
                    logger.warning("Skipping manifest outside search root: %s", e)
                    continue
                index.setdefault(manifest_file_digest(path), path)
        logger.debug("Indexed %d manifest files", len(index))
        return index

    @property
    def index(self) -> dict[str, Path]:
        if self._index is None:
            self._index = self._build_index()
        return self._index

    def path_for(self, parent_hash: str) -> Path | None:
        return self.index.get(parent_hash.lower())

    def resolve(self, parent_hash: str) -> Manifest | None:
        path = self.path_for(parent_hash)
        if path is None:
            return None
        try:
            return Manifest.from_json(path, self.limits)
        except (SecurityError, ManifestFormatError) as e:
            logger.warning("Unreadable ancestor manifest %s: %s", path, e)
            return None

    def walk(self, manifest: Manifest) -> Iterator[tuple[str, Manifest]]:
        """Yield (file digest, manifest) for each resolvable ancestor.

        Stops at the first unresolvable link or when a digest repeats.
        """
        seen: set[str] = set()
        parent = manifest.parent_hash
        while parent and parent not in seen:
            seen.add(parent)
            ancestor = self.resolve(parent)
            if ancestor is None:
                logger.info("Chain ends at unresolved parent %s", parent)
                return
            yield parent, ancestor
            parent = ancestor.parent_hash
