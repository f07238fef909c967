"""Run the HCP Core test suite, refusing interpreters older than 3.11."""

from __future__ import annotations

import subprocess
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parent.parent


def main(argv: list[str] | None = None) -> int:
    """Invoke pytest on tests/ with any extra arguments passed through."""
    if sys.version_info < (3, 11):
        print("HCP Core tests require Python 3.11+; skipping.")
        return 0

    extra = sys.argv[1:] if argv is None else argv
    return subprocess.call(
        [sys.executable, "-m", "pytest", "tests/", "-v", "--tb=short", "--strict-markers", *extra],
        cwd=REPO_ROOT,
    )


if __name__ == "__main__":
    raise SystemExit(main())
