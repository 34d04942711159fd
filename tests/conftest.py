"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.srs.deck_config import DeckConfig  # noqa: E402
from src.srs.models import Card, CardState, Rating, RatingEvent  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (use a temporary SQLite database)")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Mark based on test file location
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def now():
    """A fixed reference time."""
    return datetime(2024, 3, 4, 9, 0, 0)


@pytest.fixture
def deck_config():
    """Default deck config with learning steps 1 and 10 minutes."""
    return DeckConfig()


@pytest.fixture
def review_card(now):
    """A mature review card due now."""
    return Card(
        id="card-review",
        state=CardState.REVIEW,
        interval=6,
        ease_factor=2.5,
        next_due=now,
        last_reviewed=now - timedelta(days=6),
        review_count=4,
        created_at=now - timedelta(days=30),
    )


@pytest.fixture
def make_event(now):
    """Factory for rating events on a card."""

    def _make(card_id, rating=Rating.GOOD, response_ms=3000.0, at=None, hesitation_ms=800.0, bucket=None):
        return RatingEvent(
            card_id=card_id,
            rating=rating,
            response_time_ms=response_ms,
            hesitation_time_ms=hesitation_ms,
            timestamp=at or now,
            difficulty_bucket=bucket,
        )

    return _make


class MemoryProfileStore:
    """In-memory ProfileStore for tests."""

    def __init__(self, data=None, fail_on_save=False):
        self.data = dict(data or {})
        self.fail_on_save = fail_on_save
        self.saves = 0

    def load_profile(self, user_id):
        return self.data.get(user_id)

    def save_profile(self, user_id, data):
        if self.fail_on_save:
            raise OSError("disk full")
        self.saves += 1
        self.data[user_id] = data


@pytest.fixture
def profile_store():
    return MemoryProfileStore()
