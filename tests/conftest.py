"""Make the repository packages and the shared test fakes importable."""

from __future__ import annotations

import sys
from pathlib import Path

_TESTS = Path(__file__).resolve().parent
for entry in (_TESTS.parent, _TESTS):
    if str(entry) not in sys.path:
        sys.path.insert(0, str(entry))
