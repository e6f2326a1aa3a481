"""Run the pkgtrust test suite from the project root.

Extra arguments are passed to pytest, e.g. ``-k keyimport``.
"""

from __future__ import annotations

import subprocess
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
MIN_PYTHON = (3, 11)


def main(argv: list[str]) -> int:
    if sys.version_info < MIN_PYTHON:
        found = ".".join(map(str, sys.version_info[:3]))
        print(f"pkgtrust needs Python {'.'.join(map(str, MIN_PYTHON))}+ (found {found}); "
              "tests not run.", file=sys.stderr)
        return 0

    cmd = [sys.executable, "-m", "pytest", "tests", "--tb=short", "--strict-markers", *argv]
    return subprocess.call(cmd, cwd=ROOT)


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
