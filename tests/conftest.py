import shutil
import tempfile
from pathlib import Path

import pytest


@pytest.fixture
def short_tmp():
    """Short temporary directory; unix socket paths are limited to 108 bytes."""
    path = tempfile.mkdtemp(prefix="slm-", dir="/tmp")
    yield Path(path)
    shutil.rmtree(path, ignore_errors=True)
