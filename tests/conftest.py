"""
Test configuration shared by every upgotify test suite
"""
import logging
import sys
from pathlib import Path

# Add src to Python path so the suite runs from a plain checkout
project_root = Path(__file__).parent.parent
src_path = project_root / "src"

sys.path.insert(0, str(src_path))

import pytest


@pytest.fixture(autouse=True)
def reset_upgotify_logger():
    """Drop handlers a test attached to the package logger."""
    yield
    logging.getLogger("upgotify").handlers = []
