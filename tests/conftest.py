"""Pytest configuration - add project root to path, shared engine fixture."""
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT))


@pytest.fixture
def engine():
    """Fresh in-memory engine per test."""
    from src.abtesting.engine import ExperimentEngine
    return ExperimentEngine()
