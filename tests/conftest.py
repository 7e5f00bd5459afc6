# SPDX-License-Identifier: LGPL-3.0-or-later
import logging
import os
import sys
from pathlib import Path

import pytest

_THIS_DIR = Path(__file__).resolve().parent
_REPO_ROOT = _THIS_DIR.parent

if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))
if str(_THIS_DIR) not in sys.path:
    sys.path.insert(0, str(_THIS_DIR))

os.environ.setdefault("PYTHONPATH", str(_REPO_ROOT))


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests without external tools")


@pytest.fixture
def logger():
    log = logging.getLogger("odbckit.test")
    log.setLevel(logging.DEBUG)
    return log


@pytest.fixture
def ini_file(tmp_path):
    """Factory: write bytes to an odbcinst.ini under tmp_path and return its path."""

    def _make(content: bytes = b"") -> Path:
        p = tmp_path / "odbcinst.ini"
        p.write_bytes(content)
        return p

    return _make
