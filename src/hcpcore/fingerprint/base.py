"""Fingerprinter interface and the suffix-keyed dispatch table."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol


class ParseError(Exception):
    """Source could not be parsed; the file gets no logic fingerprint."""

    def __init__(self, path: Path | str, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path = str(path)


class Fingerprinter(Protocol):
    """Produces a formatting-invariant digest of one source file."""

    def fingerprint(self, path: Path) -> str:
        """Return the hex logic fingerprint, or raise ParseError."""
        ...


class FingerprinterRegistry:
    """Maps lower-cased file suffixes to fingerprinting strategies."""

    def __init__(self) -> None:
        self._strategies: dict[str, Fingerprinter] = {}

    def register(self, suffix: str, fingerprinter: Fingerprinter) -> None:
        """Register a strategy for a suffix such as ``.py``."""
        if not suffix.startswith("."):
            suffix = f".{suffix}"
        self._strategies[suffix.lower()] = fingerprinter

    def unregister(self, suffix: str) -> None:
        self._strategies.pop(suffix.lower(), None)

    def for_path(self, path: Path | str) -> Fingerprinter | None:
        """Strategy for a path, or None when its language is unsupported."""
        return self._strategies.get(Path(path).suffix.lower())

    def supports(self, path: Path | str) -> bool:
        return self.for_path(path) is not None

    @property
    def suffixes(self) -> list[str]:
        return sorted(self._strategies)
