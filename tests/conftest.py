import os
import sys
import tempfile
from datetime import datetime, timedelta, timezone
from typing import Generator

import pytest

# Add the parent directory to the path so we can import our modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

# The app builds its engine at import time; point it at a throwaway file
_TEST_DB_DIR = tempfile.mkdtemp(prefix="scrape-api-tests-")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault(
    "DATABASE_URL", f"sqlite+aiosqlite:///{os.path.join(_TEST_DB_DIR, 'test.db')}"
)

from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from main import app
from core.database import build_engine, create_db_and_tables
from core.models import ProfileData
from services.scrape_events import ScrapeEventBus
from feed_builder import FakeInstagramProvider, make_post


@pytest.fixture(scope="module")
def test_client() -> Generator[TestClient, None, None]:
    """Create a test client for the FastAPI app."""
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
async def db_engine():
    """In-memory SQLite engine with the tables created."""
    engine = build_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    await create_db_and_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    """Session factory bound to the in-memory engine."""
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def event_bus():
    """A private event bus so tests never see each other's listeners."""
    return ScrapeEventBus()


@pytest.fixture
def recorded_events(event_bus):
    """Events emitted on the test bus for session `session-1`."""
    received = []
    event_bus.subscribe("session-1", received.append)
    yield received
    event_bus.unsubscribe("session-1", received.append)


@pytest.fixture
def now():
    return datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def sample_profile():
    """Sample profile data for testing."""
    return ProfileData(
        username="alice",
        full_name="Alice Example",
        bio="Travel and food",
        followers=1200,
        following=300,
        posts_count=12,
        profile_pic_url="https://example.com/alice.jpg",
        is_verified=False,
        is_business=True,
    )


@pytest.fixture
def twelve_posts(now):
    """Twelve unpinned posts, newest first, one day apart."""
    return [
        make_post(f"SC{index:02d}", date=now - timedelta(days=index))
        for index in range(12)
    ]


@pytest.fixture
def fake_provider(sample_profile, twelve_posts):
    return FakeInstagramProvider(profile=sample_profile, feed=twelve_posts)
