"""
Pytest configuration file.

Sets up the Python path so test files can import from the python/ directory,
and provides an in-memory object store for the reaper tests.
"""
import sys
from pathlib import Path

import pytest

# Add python directory to path for all tests
_python_dir = Path(__file__).parent.parent / 'python'
_python_dir_abs = str(_python_dir.absolute())
if _python_dir_abs not in sys.path:
    sys.path.insert(0, _python_dir_abs)

_tests_dir_abs = str(Path(__file__).parent.absolute())
if _tests_dir_abs not in sys.path:
    sys.path.insert(0, _tests_dir_abs)

from fake_object_store import NOW, FakeObjectStore  # noqa: E402


@pytest.fixture
def store():
    """Empty in-memory bucket"""
    return FakeObjectStore()


@pytest.fixture
def clock():
    """Clock frozen at NOW"""
    return lambda: NOW
