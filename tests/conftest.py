"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.db.database import Database  # noqa: E402
from src.db.repository import Repository  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (in-memory SQLite)")
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
    """A fixed UTC instant."""
    return datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def database():
    """Fresh in-memory SQLite database with all tables."""
    db = Database("sqlite://")
    db.init_db()
    yield db
    db.dispose()


@pytest.fixture
def repository(database):
    return Repository(database)


@pytest.fixture
def sample_problems(repository):
    """Five problems across three patterns."""
    return [
        repository.add_problem("two-sum", "Two Sum", "Arrays", "Easy", "Hash Map"),
        repository.add_problem("3sum", "3Sum", "Arrays", "Medium", "Two Pointers"),
        repository.add_problem("container-with-most-water", "Container With Most Water", "Arrays", "Medium", "Two Pointers"),
        repository.add_problem("longest-substring", "Longest Substring Without Repeating Characters", "Strings", "Medium", "Sliding Window"),
        repository.add_problem("group-anagrams", "Group Anagrams", "Strings", "Medium", "Hash Map"),
    ]
