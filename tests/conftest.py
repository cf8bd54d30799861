# tests/conftest.py
"""
Common fixtures for all test types
These are shared across unit and integration tests
"""

import sys
import tempfile
from pathlib import Path

import pytest

# Add project root to Python path so 'gc_connector' can be imported
# This allows tests to run without installing the package
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)
