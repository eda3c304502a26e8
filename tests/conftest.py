"""BlockFlow test bootstrap.

Tests import both `blockflow` and the web backend (`web.backend`) from the
repository checkout, so the repo root must be importable even when the
project is not installed.
"""

from __future__ import annotations

import sys
from pathlib import Path


def _prepend_sys_path(path: Path) -> None:
    p = str(path)
    if p and p not in sys.path:
        sys.path.insert(0, p)


HERE = Path(__file__).resolve()
BLOCKFLOW_ROOT = HERE.parents[1]

_prepend_sys_path(BLOCKFLOW_ROOT)
