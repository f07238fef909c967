"""Limits and sanitization for untrusted input.

Guards against:
- Path traversal outside the scanned root
- Resource exhaustion from huge files, huge trees or deeply nested manifests
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

# Default limits
DEFAULT_MAX_FILE_SIZE = 512 * 1024 * 1024  # 512 MB
DEFAULT_MAX_FILES = 200_000
DEFAULT_MAX_MANIFEST_SIZE = 64 * 1024 * 1024  # 64 MB
DEFAULT_MAX_JSON_DEPTH = 32


class SecurityLimits:
    """Configurable input limits."""

    def __init__(
        self,
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
        max_files: int = DEFAULT_MAX_FILES,
        max_manifest_size: int = DEFAULT_MAX_MANIFEST_SIZE,
        max_json_depth: int = DEFAULT_MAX_JSON_DEPTH,
    ) -> None:
        self.max_file_size = max_file_size
        self.max_files = max_files
        self.max_manifest_size = max_manifest_size
        self.max_json_depth = max_json_depth


class SecurityError(Exception):
    """Security violation detected."""
    pass


def check_path_safety(path: Path, base_dir: Path | None = None) -> Path:
    """Verify path does not escape base_dir.

    Args:
        path: Path to check
        base_dir: Allowed base directory (if None, no restriction)

    Returns:
        Resolved path

    Raises:
        SecurityError: If path traversal detected
    """
    resolved = path.resolve()

    if base_dir is not None:
        base_resolved = base_dir.resolve()
        try:
            resolved.relative_to(base_resolved)
        except ValueError:
            raise SecurityError(
                f"Path traversal detected: {path} is outside {base_dir}"
            )

    return resolved


def check_json_depth(obj: Any, current_depth: int = 0, max_depth: int = DEFAULT_MAX_JSON_DEPTH) -> int:
    """Check JSON object depth.

    Returns:
        Actual depth of object

    Raises:
        SecurityError: If depth exceeds max_depth
    """
    if current_depth > max_depth:
        raise SecurityError(f"JSON depth exceeds maximum: {max_depth}")

    if isinstance(obj, dict):
        max_child_depth = current_depth
        for value in obj.values():
            child_depth = check_json_depth(value, current_depth + 1, max_depth)
            max_child_depth = max(max_child_depth, child_depth)
        return max_child_depth
    elif isinstance(obj, list):
        max_child_depth = current_depth
        for item in obj:
            child_depth = check_json_depth(item, current_depth + 1, max_depth)
            max_child_depth = max(max_child_depth, child_depth)
        return max_child_depth
    else:
        return current_depth


def safe_load_json(
    data: bytes | str,
    limits: SecurityLimits | None = None,
) -> Any:
    """Load JSON with size and depth limits.

    Args:
        data: JSON document as bytes or string
        limits: Security limits

    Returns:
        Parsed JSON object

    Raises:
        SecurityError: If limits exceeded or the document is not JSON
    """
    if limits is None:
        limits = SecurityLimits()

    raw = data if isinstance(data, bytes) else data.encode("utf-8")
    if len(raw) > limits.max_manifest_size:
        raise SecurityError(
            f"JSON data too large: {len(raw)} bytes > {limits.max_manifest_size}"
        )

    try:
        obj = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise SecurityError(f"Invalid JSON: {e}")

    check_json_depth(obj, max_depth=limits.max_json_depth)

    return obj
