import os
import sys
from pathlib import Path

import pytest

for _name in list(os.environ):
    if _name.startswith("COMMITMENTS_"):
        del os.environ[_name]

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from commitments.merkle import sha256  # noqa: E402


@pytest.fixture()
def leaves():
    return [sha256(label.encode("ascii")) for label in ("A", "B", "C", "D", "E", "F", "G", "H")]
