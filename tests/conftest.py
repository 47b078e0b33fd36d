"""
Pytest configuration for transcript learning tests.

This module provides:
1. A store bound to a temporary SQLite file per test
2. Engines sharing that store
3. A clock helper for back-dated records
"""

import tempfile
from datetime import timedelta
from pathlib import Path

import pytest

from transcript_learning.aggregation import AggregationEngine
from transcript_learning.config import Settings
from transcript_learning.learning_cycle import LearningCycle
from transcript_learning.learning_model import format_timestamp, local_now
from transcript_learning.learning_store import LearningStore
from transcript_learning.recommendation_engine import RecommendationEngine
from transcript_learning.search_engine import SearchEngine


# -----------------------------------------------------------------------------
# Store Fixtures
# -----------------------------------------------------------------------------
@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def settings(temp_dir) -> Settings:
    return Settings(
        db_path=str(temp_dir / "learning.db"),
        store_timeout_seconds=2.0,
        retry_attempts=2,
        retry_backoff_seconds=0.01,
    )


@pytest.fixture
def store(settings):
    """Create a learning store backed by a temp database."""
    learning_store = LearningStore(settings)
    yield learning_store
    learning_store.close()


@pytest.fixture
def search(store):
    return SearchEngine(store)


@pytest.fixture
def aggregation(store):
    return AggregationEngine(store)


@pytest.fixture
def recommendation(store, search, aggregation):
    return RecommendationEngine(store, search, aggregation)


@pytest.fixture
def cycle(store, aggregation, search):
    return LearningCycle(store, aggregation, search)


# -----------------------------------------------------------------------------
# Clock Helpers
# -----------------------------------------------------------------------------
@pytest.fixture
def ago(settings):
    """Return a timestamp string `days` (and `minutes`) before now."""
    def _ago(days: float = 0, minutes: float = 0) -> str:
        moment = local_now(settings.utc_offset_hours) - timedelta(days=days, minutes=minutes)
        return format_timestamp(moment)
    return _ago
