"""Structural (logic) fingerprints for source files.

A fingerprint is the SHA-256 of a canonical, formatting-invariant signature
of a file's declarations and control flow. Languages are dispatched by file
suffix; unsupported files simply have no fingerprint.
"""

from __future__ import annotations

from hcpcore.fingerprint.base import Fingerprinter, FingerprinterRegistry, ParseError
from hcpcore.fingerprint.python import PythonFingerprinter


def default_registry() -> FingerprinterRegistry:
    """Registry with every built-in language registered."""
    registry = FingerprinterRegistry()
    python = PythonFingerprinter()
    registry.register(".py", python)
    registry.register(".pyi", python)
    return registry


__all__ = [
    "Fingerprinter",
    "FingerprinterRegistry",
    "ParseError",
    "PythonFingerprinter",
    "default_registry",
]
