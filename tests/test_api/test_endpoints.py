"""
Tests for the scrape API endpoints and the progress stream.
"""
import asyncio
import os
import tempfile

import pytest
from unittest.mock import AsyncMock, Mock
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool
from sqlmodel import SQLModel

import core.models  # noqa: F401
from api.dependencies import get_scrape_events, get_scrape_job_service
from api.endpoints import format_sse, scrape_event_stream
from core.database import build_engine
from core.exceptions import (
    AuthenticationRequiredError,
    ProfileNotFoundError,
    ScrapeFaultError,
)
from main import app
from services.scrape_events import ScrapeEventBus
from services.scrape_job_service import ScrapeJob, ScrapeJobOutcome, ScrapeJobService
from services.scrape_repository import ScrapeRepository
from services.scraper_service import ScraperService


@pytest.fixture
def job_service():
    service = Mock(spec=ScrapeJobService)
    service.run = AsyncMock(
        return_value=ScrapeJobOutcome(
            success=True, influencer_id="influencer_alice", posts_scraped=12
        )
    )
    app.dependency_overrides[get_scrape_job_service] = lambda: service
    yield service
    app.dependency_overrides.pop(get_scrape_job_service, None)


class TestHealthEndpoints:
    """Test health and monitoring endpoints"""

    def test_root(self, test_client):
        response = test_client.get("/")
        assert response.status_code == 200
        assert response.json() == {"status": "OK"}

    def test_healthcheck(self, test_client):
        response = test_client.get("/healthcheck")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "Instagram Scrape API"
        assert "X-Correlation-ID" in response.headers
        assert "X-Process-Time" in response.headers

    def test_scrape_health(self, test_client):
        response = test_client.get("/api/scrape/health")
        assert response.status_code == 200
        assert response.json() == {"healthy": True}

    def test_ping(self, test_client):
        response = test_client.get("/monitoring/ping")
        assert response.status_code == 200
        assert response.json()["message"] == "pong"

    def test_detailed_health(self, test_client):
        response = test_client.get("/monitoring/detailed")

        assert response.status_code == 200
        data = response.json()
        assert data["components"]["database"]["status"] == "healthy"
        assert "active_sessions" in data["components"]["event_bus"]["stats"]


class TestTriggerEndpoint:
    """Test POST /api/scrape"""

    def test_trigger_scrape(self, test_client, job_service):
        response = test_client.post(
            "/api/scrape",
            json={
                "username": "@alice",
                "dateFrom": "2024-06-01",
                "dateTo": "2024-06-30",
                "sessionId": "session-1",
                "sessionUsername": "scout",
            },
        )

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "influencerId": "influencer_alice",
            "postsScraped": 12,
        }
        job_service.run.assert_awaited_once_with(
            ScrapeJob(
                session_id="session-1",
                username="@alice",
                date_from="2024-06-01",
                date_to="2024-06-30",
                session_username="scout",
            )
        )

    def test_optional_fields(self, test_client, job_service):
        response = test_client.post(
            "/api/scrape", json={"username": "alice", "sessionId": "session-1"}
        )

        assert response.status_code == 200
        job = job_service.run.await_args.args[0]
        assert job.date_from is None
        assert job.session_username is None

    @pytest.mark.parametrize(
        "payload",
        [
            {"username": "alice"},
            {"sessionId": "session-1"},
            {"username": "", "sessionId": "session-1"},
            {"username": "alice", "sessionId": ""},
        ],
    )
    def test_missing_fields_rejected(self, test_client, job_service, payload):
        response = test_client.post("/api/scrape", json=payload)

        assert response.status_code == 422
        job_service.run.assert_not_awaited()

    @pytest.mark.parametrize(
        "error, status_code, error_code",
        [
            (ProfileNotFoundError("ghost"), 404, "PROFILE_NOT_FOUND"),
            (AuthenticationRequiredError("alice"), 401, "AUTHENTICATION_REQUIRED"),
            (ScrapeFaultError("alice", "timeout"), 502, "SCRAPE_FAULT"),
        ],
    )
    def test_scrape_errors_are_mapped(
        self, test_client, job_service, error, status_code, error_code
    ):
        """Test that scrape failures become the standard error body"""
        job_service.run.side_effect = error

        response = test_client.post(
            "/api/scrape", json={"username": "alice", "sessionId": "session-1"}
        )

        assert response.status_code == status_code
        body = response.json()["error"]
        assert body["code"] == error_code
        assert body["message"] == error.message
        assert body["correlation_id"] == response.headers["X-Correlation-ID"]

    def test_unexpected_error_is_internal(self, test_client, job_service):
        job_service.run.side_effect = RuntimeError("boom")

        response = test_client.post(
            "/api/scrape", json={"username": "alice", "sessionId": "session-1"}
        )

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "INTERNAL_ERROR"


class TestTriggerEndToEnd:
    """Test the trigger endpoint with a real job service and a scripted feed"""

    @pytest.fixture
    def wired_app(self, fake_provider):
        db_dir = tempfile.mkdtemp(prefix="scrape-api-e2e-")
        db_path = os.path.join(db_dir, "e2e.db")
        SQLModel.metadata.create_all(create_engine(f"sqlite:///{db_path}"))

        engine = build_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)
        session_factory = async_sessionmaker(
            engine, class_=AsyncSession, expire_on_commit=False
        )
        bus = ScrapeEventBus()
        service = ScrapeJobService(
            scraper=ScraperService(provider_factory=lambda: fake_provider),
            events=bus,
            session_factory=session_factory,
        )
        app.dependency_overrides[get_scrape_job_service] = lambda: service
        app.dependency_overrides[get_scrape_events] = lambda: bus
        yield bus, db_path
        app.dependency_overrides.pop(get_scrape_job_service, None)
        app.dependency_overrides.pop(get_scrape_events, None)

    def test_scrape_is_stored_and_narrated(self, test_client, wired_app):
        bus, db_path = wired_app
        received = []
        bus.subscribe("session-9", received.append)

        response = test_client.post(
            "/api/scrape", json={"username": "alice", "sessionId": "session-9"}
        )
        bus.unsubscribe("session-9", received.append)

        assert response.status_code == 200
        assert response.json()["postsScraped"] == 12
        assert received[0].type == "start"
        assert received[-1].type == "success"
        assert received[-1].data.posts_scraped == 12

        with create_engine(f"sqlite:///{db_path}").connect() as conn:
            stored = conn.exec_driver_sql("SELECT COUNT(*) FROM post").scalar()
            logs = conn.exec_driver_sql("SELECT status FROM scrape_log").all()
        assert stored == 12
        assert [row[0] for row in logs] == ["success"]


class FakeRequest:
    def __init__(self):
        self.is_disconnected = AsyncMock(return_value=False)


class TestProgressStream:
    """Test the SSE relay generator"""

    def test_format_sse(self):
        assert format_sse("ping", "ping") == "event: ping\ndata: ping\n\n"
        assert format_sse("progress", "a\nb") == "event: progress\ndata: a\ndata: b\n\n"

    @pytest.mark.asyncio
    async def test_relays_session_events(self):
        """Test that emitted events arrive as named SSE messages"""
        bus = ScrapeEventBus()
        stream = scrape_event_stream("session-1", FakeRequest(), bus, heartbeat_seconds=5)

        pending = asyncio.ensure_future(stream.__anext__())
        await asyncio.sleep(0.01)
        assert bus.has_listeners("session-1")

        bus.emit("session-1", "start", "Starting scrape for @alice...")
        message = await asyncio.wait_for(pending, timeout=1)

        assert message.startswith("event: start\ndata: ")
        assert '"message":"Starting scrape for @alice..."' in message
        assert message.endswith("\n\n")

        await stream.aclose()
        assert not bus.has_listeners("session-1")

    @pytest.mark.asyncio
    async def test_other_sessions_are_not_relayed(self):
        bus = ScrapeEventBus()
        stream = scrape_event_stream("session-1", FakeRequest(), bus, heartbeat_seconds=5)

        pending = asyncio.ensure_future(stream.__anext__())
        await asyncio.sleep(0.01)
        bus.emit("session-2", "start", "someone else")
        bus.emit("session-1", "progress", "mine")

        message = await asyncio.wait_for(pending, timeout=1)
        assert "mine" in message
        await stream.aclose()

    @pytest.mark.asyncio
    async def test_heartbeat(self):
        """Test that an idle stream sends a ping message"""
        bus = ScrapeEventBus()
        stream = scrape_event_stream(
            "session-1", FakeRequest(), bus, heartbeat_seconds=0.05
        )

        message = await asyncio.wait_for(stream.__anext__(), timeout=1)

        assert message == "event: ping\ndata: ping\n\n"
        await stream.aclose()

    @pytest.mark.asyncio
    async def test_stream_ends_at_time_limit(self):
        bus = ScrapeEventBus()
        stream = scrape_event_stream(
            "session-1", FakeRequest(), bus, heartbeat_seconds=5, max_seconds=0.05
        )

        messages = [m async for m in stream]

        assert messages == []
        assert not bus.has_listeners("session-1")

    @pytest.mark.asyncio
    async def test_stream_ends_on_disconnect(self):
        """Test that a departed client loses its listener"""
        bus = ScrapeEventBus()
        request = FakeRequest()
        request.is_disconnected = AsyncMock(return_value=True)
        stream = scrape_event_stream("session-1", request, bus, heartbeat_seconds=5)

        messages = [m async for m in stream]

        assert messages == []
        assert not bus.has_listeners("session-1")

    @pytest.mark.asyncio
    async def test_events_from_worker_thread_are_relayed(self):
        bus = ScrapeEventBus()
        stream = scrape_event_stream("session-1", FakeRequest(), bus, heartbeat_seconds=5)

        pending = asyncio.ensure_future(stream.__anext__())
        await asyncio.sleep(0.01)
        await asyncio.to_thread(bus.emit, "session-1", "progress", "from a thread")

        message = await asyncio.wait_for(pending, timeout=1)
        assert "from a thread" in message
        await stream.aclose()
