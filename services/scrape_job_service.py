"""
Scrape Job Service.

Runs one scrape attempt end to end on behalf of the trigger endpoint:

1. narrate `start` to the session's live stream,
2. run `ScraperService`, forwarding its narration as `progress` events,
3. persist the profile, the posts and a scrape log in one transaction,
4. narrate exactly one terminal event: `success`, or `error` on any failure.

The job does not depend on anyone listening: with no subscriber the events are
dropped by the bus and the scrape and its writes still complete. Closing the
stream never cancels a running job.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.database import async_session
from core.exceptions import (
    DatabaseConnectionError,
    ScrapeFaultError,
    ScraperAPIException,
    ValidationError,
)
from core.models import (
    Influencer,
    ScrapeEventData,
    ScrapeLogRecord,
    influencer_id_for,
)
from services.scrape_events import ScrapeEventBus, scrape_events
from services.scrape_repository import ScrapeRepository
from services.scraper_service import (
    ScrapeRequest,
    ScrapeResult,
    ScraperService,
    normalize_username,
    parse_date_window,
)

logger = logging.getLogger(__name__)

PROGRESS_BATCH_SIZE = 10


@dataclass
class ScrapeJob:
    session_id: str
    username: str
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    session_username: Optional[str] = None


@dataclass
class ScrapeJobOutcome:
    success: bool
    influencer_id: str
    posts_scraped: int
    status: str = "success"


class ScrapeJobService:
    """Glue between the trigger endpoint, the scraper, the store and the bus"""

    def __init__(
        self,
        scraper: Optional[ScraperService] = None,
        repository: Optional[ScrapeRepository] = None,
        events: ScrapeEventBus = scrape_events,
        session_factory: async_sessionmaker = async_session,
    ):
        self.scraper = scraper or ScraperService()
        self.repository = repository or ScrapeRepository()
        self.events = events
        self.session_factory = session_factory

    async def run(self, job: ScrapeJob) -> ScrapeJobOutcome:
        session_id = job.session_id
        username = normalize_username(job.username)
        influencer_id = None

        def progress(message: str, data: Optional[ScrapeEventData] = None):
            self.events.emit(session_id, "progress", message, data)

        try:
            if not session_id or not session_id.strip():
                raise ValidationError("sessionId", session_id, "sessionId is required")
            if not username:
                raise ValidationError("username", job.username, "username is required")

            self.events.emit(session_id, "start", f"Starting scrape for @{username}...")
            progress("Initializing scraper...")

            date_from, date_to = parse_date_window(job.date_from, job.date_to)

            result = await self.scraper.scrape_influencer(
                ScrapeRequest(
                    username=username,
                    date_from=date_from,
                    date_to=date_to,
                    session_username=job.session_username or None,
                    on_log=progress,
                )
            )

            profile = result.profile
            progress(
                f"Profile retrieved: {profile.full_name} (@{profile.username})",
                ScrapeEventData(total_posts=len(result.posts)),
            )

            influencer_id = influencer_id_for(profile.username)
            async with self.session_factory() as session:
                try:
                    await self._persist(session, result, date_from, date_to, progress)
                    await session.commit()
                except SQLAlchemyError as e:
                    await session.rollback()
                    raise DatabaseConnectionError("save_scrape", str(e)) from e
                except Exception:
                    await session.rollback()
                    raise

            status = "partial" if result.truncated else "success"
            count = len(result.posts)
            logger.info(
                f"Scrape of @{profile.username} finished: {count} posts ({status})",
                extra={"session_id": session_id, "stop_reason": result.stop_reason.value},
            )
            self.events.emit(
                session_id,
                "success",
                f"Successfully scraped {count} posts!",
                ScrapeEventData(posts_scraped=count),
            )
            return ScrapeJobOutcome(
                success=True,
                influencer_id=influencer_id,
                posts_scraped=count,
                status=status,
            )

        except ScraperAPIException as e:
            await self._fail(session_id, e, influencer_id, job)
            raise
        except Exception as e:
            logger.error(f"Unexpected error in scrape job: {e}", exc_info=True)
            fault = ScrapeFaultError(username or job.username, str(e))
            await self._fail(session_id, fault, influencer_id, job)
            raise fault from e

    async def _persist(
        self,
        session: AsyncSession,
        result: ScrapeResult,
        date_from,
        date_to,
        progress,
    ) -> str:
        posts = result.posts
        total = len(posts)

        progress("Saving influencer profile to database...")
        influencer_id = await self.repository.upsert_profile(session, result.profile)

        progress(f"Saving {total} posts...")
        for index, post in enumerate(posts, start=1):
            await self.repository.insert_post_if_absent(session, influencer_id, post)
            if index % PROGRESS_BATCH_SIZE == 0 or index == total:
                progress(
                    f"Saved {index}/{total} posts",
                    ScrapeEventData(
                        posts_scraped=index,
                        total_posts=total,
                        current_post=post.shortcode,
                    ),
                )

        error_message = None
        if result.truncated:
            error_message = (
                f"Stopped after {result.item_errors} post fetch errors; "
                "results may be incomplete"
            )
        await self.repository.append_scrape_log(
            session,
            ScrapeLogRecord(
                influencer_id=influencer_id,
                date_from=date_from,
                date_to=date_to,
                posts_count=total,
                status="partial" if result.truncated else "success",
                error_message=error_message,
            ),
        )
        return influencer_id

    async def _fail(
        self,
        session_id: str,
        error: ScraperAPIException,
        influencer_id: Optional[str],
        job: ScrapeJob,
    ) -> None:
        self.events.emit(session_id, "error", f"Error: {error.message}")
        if influencer_id is None:
            return
        await self._append_failed_log(influencer_id, error, job)

    async def _append_failed_log(
        self, influencer_id: str, error: ScraperAPIException, job: ScrapeJob
    ) -> None:
        try:
            date_from, date_to = parse_date_window(job.date_from, job.date_to)
            async with self.session_factory() as session:
                # The failed transaction was rolled back; only a previously
                # stored influencer can carry the log.
                if await session.get(Influencer, influencer_id) is None:
                    return
                await self.repository.append_scrape_log(
                    session,
                    ScrapeLogRecord(
                        influencer_id=influencer_id,
                        date_from=date_from,
                        date_to=date_to,
                        posts_count=0,
                        status="failed",
                        error_message=error.message,
                    ),
                )
                await session.commit()
        except Exception as e:
            logger.error(f"Could not record failed scrape for {influencer_id}: {e}")
