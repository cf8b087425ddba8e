"""
Instagram Scraper Service.

`ScraperService` drives one scrape: it resolves a (possibly authenticated)
provider, fetches the profile, walks the post feed under `FeedPolicy`, and
normalizes the posts it keeps. It performs no writes; persisting the result is
the caller's job (see `ScrapeJobService`).

Every step is narrated twice: to the module logger, and to the optional
`on_log` callback of the request, which the scrape job forwards to the live
stream as `progress` events.

Outcome:
- `ScrapeResult` on success, including when the walk ended early because of
  the date window, the post cap, or the consecutive error threshold
  (`stop_reason` tells which).
- `ProfileNotFoundError` / `AuthenticationRequiredError` abort immediately
  with no partial data.
- Any unexpected exception is wrapped in `ScrapeFaultError`.
"""

import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from typing import Callable, List, Optional, Tuple

from core.exceptions import ScrapeFaultError, ScraperAPIException, ValidationError
from core.models import PostData, ProfileData
from providers.instagram_provider import InstagramProvider, InstaloaderProvider
from services.feed_policy import MAX_POSTS, FeedDecision, FeedPolicy, StopReason
from services.post_normalizer import normalize_post

logger = logging.getLogger(__name__)

LogCallback = Callable[[str], None]


@dataclass
class ScrapeRequest:
    username: str
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    session_username: Optional[str] = None
    on_log: Optional[LogCallback] = None


@dataclass
class ScrapeResult:
    profile: ProfileData
    posts: List[PostData] = field(default_factory=list)
    stop_reason: StopReason = StopReason.EXHAUSTED
    skipped_pinned: int = 0
    skipped_out_of_range: int = 0
    item_errors: int = 0

    @property
    def truncated(self) -> bool:
        """True when item errors, not the feed or the filters, ended the walk"""
        return self.stop_reason is StopReason.ERROR_THRESHOLD


def normalize_username(username: str) -> str:
    return (username or "").strip().lstrip("@").strip()


def _parse_day(field_name: str, value: str) -> date:
    """Calendar day of a date or ISO datetime, taken in UTC when an offset is given"""
    try:
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    except (AttributeError, TypeError, ValueError):
        raise ValidationError(field_name, value, "expected a YYYY-MM-DD date")

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.date()


def parse_date_window(
    date_from: Optional[str], date_to: Optional[str]
) -> Tuple[Optional[datetime], Optional[datetime]]:
    """
    Turn calendar-date strings into an inclusive UTC window.

    `date_from` starts at midnight, `date_to` runs to the last microsecond of
    its day.
    """
    start = end = None
    if date_from:
        start = datetime.combine(
            _parse_day("dateFrom", date_from), time.min, tzinfo=timezone.utc
        )
    if date_to:
        end = datetime.combine(
            _parse_day("dateTo", date_to), time.max, tzinfo=timezone.utc
        )
    if start and end and start > end:
        raise ValidationError("dateFrom", date_from, "dateFrom is after dateTo")
    return start, end


class ScraperService:
    """Orchestrates the fetch/filter/normalize pipeline for one profile"""

    def __init__(
        self,
        provider_factory: Callable[[], InstagramProvider] = InstaloaderProvider,
        max_posts: int = MAX_POSTS,
    ):
        self.provider_factory = provider_factory
        self.max_posts = max_posts

    async def scrape_influencer(self, request: ScrapeRequest) -> ScrapeResult:
        username = normalize_username(request.username)
        if not username:
            raise ValidationError("username", request.username, "username is required")

        def log(message: str):
            logger.info(message)
            if request.on_log:
                request.on_log(message)

        try:
            provider = self.provider_factory()

            if request.session_username:
                log(f"[Scraper] Loading session for {request.session_username}...")
                loaded = await provider.load_session(request.session_username)
                if not loaded:
                    log("[Scraper] Session not loaded, continuing without authentication")

            log(f"[Scraper] Getting profile for {username}...")
            profile = await provider.get_profile(username)
            log(
                f"[Scraper] Profile retrieved: {profile.full_name} (@{profile.username})"
            )
            log("[Scraper] Fetching posts...")

            return await self._collect_posts(provider, profile, request, log)

        except ScraperAPIException as e:
            logger.error(f"[Scraper] {type(e).__name__}: {e.message}")
            raise
        except Exception as e:
            logger.error(f"[Scraper] Unexpected error: {e}", exc_info=True)
            raise ScrapeFaultError(username, str(e)) from e

    async def _collect_posts(
        self,
        provider: InstagramProvider,
        profile: ProfileData,
        request: ScrapeRequest,
        log: LogCallback,
    ) -> ScrapeResult:
        policy = FeedPolicy(
            date_from=request.date_from,
            date_to=request.date_to,
            max_posts=self.max_posts,
        )
        result = ScrapeResult(profile=profile)
        seen = 0

        async with aclosing(provider.iter_posts()) as feed:
            async for item in feed:
                if item.is_error:
                    result.item_errors += 1
                    decision = policy.on_error(item.error)
                    logger.error(
                        f"[Scraper] Post error #{policy.consecutive_errors}: "
                        f"{item.error.error_code} - {item.error.message}"
                    )
                    if decision is FeedDecision.ABORT:
                        log("[Scraper] Authentication required to fetch posts")
                        raise item.error
                    if decision is FeedDecision.STOP:
                        log("[Scraper] Too many consecutive errors, stopping")
                        break
                    continue

                raw = item.post
                seen += 1
                decision = policy.on_post(raw.is_pinned, raw.date)

                if raw.is_pinned:
                    log(f"[Scraper] Skipping pinned post #{seen}: {raw.shortcode}")
                    continue

                posted_at = raw.date.isoformat() if raw.date else "no date"
                log(f"[Scraper] Post #{seen}: {raw.shortcode} ({posted_at})")

                if decision is not FeedDecision.COLLECT:
                    position = policy.position(raw.date).value
                    log(
                        f"[Scraper] Post is {position} the date window "
                        f"({policy.consecutive_out_of_range} consecutive)"
                    )
                    if decision is FeedDecision.STOP:
                        log(
                            f"[Scraper] {policy.consecutive_out_of_range} consecutive "
                            "posts outside the date window, stopping"
                        )
                        break
                    continue

                result.posts.append(await normalize_post(raw, provider))

                if policy.on_collected(len(result.posts)) is FeedDecision.STOP:
                    log(f"[Scraper] Reached {self.max_posts} posts limit")
                    break

        result.stop_reason = policy.stop_reason
        result.skipped_pinned = policy.skipped_pinned
        result.skipped_out_of_range = policy.skipped_out_of_range

        if result.skipped_pinned:
            log(f"[Scraper] Skipped {result.skipped_pinned} pinned post(s)")
        log(f"[Scraper] Done! Scraped {len(result.posts)} posts")

        return result
