"""
API Endpoints for scraping.

Endpoints Provided:
- `POST /api/scrape`: runs a scrape for a handle and persists the result. The
  request carries the `sessionId` whose live stream receives the progress.
- `GET /api/scrape/health`: readiness of the scrape service.
- `GET /api/scrape/stream/{session_id}`: Server-Sent Events stream of the
  progress events of one session.

A client opens the stream first, then triggers the scrape with the same
`sessionId`; events emitted before the stream is open are not replayed.

Stream format: one SSE message per event, named after the event `type` and
carrying the JSON-encoded event. A `ping` message with the literal payload
`ping` is sent every `HEARTBEAT_SECONDS`. The stream closes on its own after
`MAX_STREAM_SECONDS`; when the client leaves first, its listener is removed and
the heartbeat stops. The scrape itself keeps running either way.
"""

import asyncio
import logging
import os
from typing import AsyncIterator, Optional
from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from core.logging_config import log_function_call
from core.models import ScrapeEvent
from services.scrape_events import ScrapeEventBus
from services.scrape_job_service import ScrapeJob, ScrapeJobService
from .dependencies import get_scrape_events, get_scrape_job_service

logger = logging.getLogger(__name__)

HEARTBEAT_SECONDS = float(os.getenv("SCRAPE_STREAM_HEARTBEAT_SECONDS", "30"))
MAX_STREAM_SECONDS = float(os.getenv("SCRAPE_STREAM_MAX_SECONDS", str(60 * 60)))

router = APIRouter(prefix="/api/scrape", tags=["Scraping"])
stream_router = APIRouter(prefix="/api/scrape", tags=["Live Progress"])


# Request/Response Models
class ScrapeTriggerRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username: str = Field(min_length=1)
    date_from: Optional[str] = Field(default=None, alias="dateFrom")
    date_to: Optional[str] = Field(default=None, alias="dateTo")
    session_id: str = Field(min_length=1, alias="sessionId")
    session_username: Optional[str] = Field(default=None, alias="sessionUsername")


class ScrapeTriggerResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    influencer_id: str = Field(alias="influencerId")
    posts_scraped: int = Field(alias="postsScraped")


def format_sse(event: str, data: str) -> str:
    lines = "".join(f"data: {line}\n" for line in data.split("\n"))
    return f"event: {event}\n{lines}\n"


async def scrape_event_stream(
    session_id: str,
    request: Request,
    events: ScrapeEventBus,
    heartbeat_seconds: float = HEARTBEAT_SECONDS,
    max_seconds: float = MAX_STREAM_SECONDS,
) -> AsyncIterator[str]:
    """Relay bus events for one session as SSE messages until closed"""
    loop = asyncio.get_running_loop()
    queue: "asyncio.Queue[ScrapeEvent]" = asyncio.Queue()

    def listener(event: ScrapeEvent):
        loop.call_soon_threadsafe(queue.put_nowait, event)

    events.subscribe(session_id, listener)
    logger.info(f"Progress stream opened for session {session_id}")

    deadline = loop.time() + max_seconds
    next_ping = loop.time() + heartbeat_seconds

    try:
        while True:
            now = loop.time()
            if now >= deadline:
                logger.info(f"Progress stream for session {session_id} reached its time limit")
                break
            if await request.is_disconnected():
                break

            try:
                event = await asyncio.wait_for(
                    queue.get(), timeout=min(next_ping, deadline) - now
                )
            except asyncio.TimeoutError:
                if loop.time() >= next_ping:
                    next_ping = loop.time() + heartbeat_seconds
                    yield format_sse("ping", "ping")
                continue

            yield format_sse(event.type, event.to_json())
    finally:
        events.unsubscribe(session_id, listener)
        logger.info(f"Progress stream closed for session {session_id}")


# REST Endpoints
@router.post("", response_model=ScrapeTriggerResponse, response_model_by_alias=True)
@log_function_call(logger)
async def trigger_scrape(
    request: ScrapeTriggerRequest,
    job_service: ScrapeJobService = Depends(get_scrape_job_service),
):
    """Scrape an Instagram profile and its posts, streaming progress to sessionId"""
    logger.info(
        f"Scrape request: session={request.session_id}, username={request.username}",
        extra={"session_id": request.session_id, "username": request.username},
    )

    outcome = await job_service.run(
        ScrapeJob(
            session_id=request.session_id,
            username=request.username,
            date_from=request.date_from,
            date_to=request.date_to,
            session_username=request.session_username,
        )
    )

    return ScrapeTriggerResponse(
        success=outcome.success,
        influencer_id=outcome.influencer_id,
        posts_scraped=outcome.posts_scraped,
    )


@router.get("/health")
async def scrape_health():
    """Check that the scrape service is ready"""
    return {"healthy": True}


# Streaming Endpoint
@stream_router.get("/stream/{session_id}")
async def stream_scrape_events(
    session_id: str,
    request: Request,
    events: ScrapeEventBus = Depends(get_scrape_events),
):
    """Stream scrape progress for a session as Server-Sent Events"""
    return StreamingResponse(
        scrape_event_stream(session_id, request, events),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
