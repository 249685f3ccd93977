"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import pytest
import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.core.gateway import ReviewItem  # noqa: E402
from src.core.mastery import Instrument  # noqa: E402
from src.core.memory_gateway import MemoryGateway  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Mark based on test file location
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


class FakeClock:
    """Manually advanced clock for orchestrator tests."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def now():
    """A fixed, timezone-aware reference time."""
    return datetime(2025, 3, 1, 9, 0, tzinfo=UTC)


@pytest.fixture
def clock(now):
    return FakeClock(now)


@pytest.fixture
def memory_gateway():
    """In-process gateway that records every call."""
    return MemoryGateway()


@pytest.fixture
def flashcard_queue():
    """Four flashcards; two share a concept, one has none."""
    return [
        ReviewItem(item_id="fc-1", instrument=Instrument.FLASHCARD, concept_id="sub-heart"),
        ReviewItem(item_id="fc-2", instrument=Instrument.FLASHCARD, concept_id="sub-heart"),
        ReviewItem(item_id="fc-3", instrument=Instrument.FLASHCARD, concept_id="sub-lungs"),
        ReviewItem(item_id="fc-4", instrument=Instrument.FLASHCARD),
    ]
