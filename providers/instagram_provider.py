"""
Instagram Provider Classes

Source of profile and post records for the scraper. `InstagramProvider` is the
interface the orchestrator consumes; `InstaloaderProvider` implements it with
the instaloader library.

instaloader is blocking (it drives `requests` underneath), so every call that
may touch the network runs in a worker thread via `asyncio.to_thread`. The post
feed is walked one item per thread hop, which keeps the event loop free between
page fetches.

Errors are classified here, close to the library that raises them:
- `ProfileNotFoundError` for handles that do not exist,
- `AuthenticationRequiredError` when instaloader refuses without a login,
- `ScrapeFaultError` for everything else.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, List, Optional

import instaloader
from instaloader.exceptions import (
    LoginException,
    LoginRequiredException,
    ProfileNotExistsException,
)

from core.exceptions import (
    AuthenticationRequiredError,
    ProfileNotFoundError,
    ScrapeFaultError,
    ScraperAPIException,
)
from core.models import ProfileData

logger = logging.getLogger(__name__)

# Message fragments instaloader uses when Instagram wants a logged-in session
AUTH_ERROR_MARKERS = (
    "login required",
    "login_required",
    "redirected to login",
    "401 unauthorized",
    "please wait a few minutes",
)


@dataclass
class RawPost:
    """A post as read from the source, before normalization"""

    shortcode: str
    owner_username: Optional[str] = None
    url: Optional[str] = None
    caption: Optional[str] = None
    date: Optional[datetime] = None
    is_video: bool = False
    is_pinned: bool = False
    is_sponsored: bool = False
    tagged_users: List[str] = field(default_factory=list)
    caption_mentions: List[str] = field(default_factory=list)
    caption_hashtags: List[str] = field(default_factory=list)
    # Provider-specific handle used for secondary lookups (co-authors)
    source: Any = field(default=None, repr=False, compare=False)


@dataclass
class FeedItem:
    """One step of the feed: either a post or the error that replaced it"""

    post: Optional[RawPost] = None
    error: Optional[ScraperAPIException] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None


class InstagramProvider(ABC):
    """Abstract base class for Instagram data sources"""

    @abstractmethod
    async def load_session(self, session_username: str) -> bool:
        """Load a saved login session. Returns False when none could be used."""
        pass

    @abstractmethod
    async def get_profile(self, username: str) -> ProfileData:
        """Fetch a profile, raising ProfileNotFoundError if it does not exist"""
        pass

    @abstractmethod
    def iter_posts(self) -> AsyncIterator[FeedItem]:
        """Walk the feed of the last fetched profile, newest first"""
        pass

    @abstractmethod
    async def get_coauthors(self, post: RawPost) -> List[str]:
        """Resolve the handles of a collaborative post's co-authors"""
        pass


def is_auth_error(error: BaseException) -> bool:
    if isinstance(error, (LoginRequiredException, LoginException)):
        return True
    text = str(error).lower()
    return any(marker in text for marker in AUTH_ERROR_MARKERS)


def classify_error(username: str, error: BaseException) -> ScraperAPIException:
    """Map an instaloader (or transport) error onto the scrape failure taxonomy"""
    if isinstance(error, ScraperAPIException):
        return error
    if isinstance(error, ProfileNotExistsException):
        return ProfileNotFoundError(username, type(error).__name__)
    if is_auth_error(error):
        return AuthenticationRequiredError(username, str(error))
    return ScrapeFaultError(username, f"{type(error).__name__}: {error}")


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class InstaloaderProvider(InstagramProvider):
    """Instagram provider backed by instaloader"""

    def __init__(self, loader: Optional["instaloader.Instaloader"] = None):
        self._loader = loader or instaloader.Instaloader(
            quiet=True,
            download_pictures=False,
            download_videos=False,
            download_video_thumbnails=False,
            download_comments=False,
            save_metadata=False,
            compress_json=False,
            iphone_support=True,
        )
        self._profile = None
        self.username: Optional[str] = None

    async def load_session(self, session_username: str) -> bool:
        try:
            # Reads instaloader's default session file for this user
            await asyncio.to_thread(
                self._loader.load_session_from_file, session_username
            )
        except Exception as e:
            logger.warning(
                f"Failed to load session for {session_username}, continuing without auth: {e}"
            )
            return False

        logger.info(f"Loaded instaloader session for {session_username}")
        return True

    async def get_profile(self, username: str) -> ProfileData:
        self.username = username
        try:
            self._profile, profile_data = await asyncio.to_thread(
                self._fetch_profile, username
            )
        except Exception as e:
            raise classify_error(username, e) from e
        return profile_data

    def _fetch_profile(self, username: str):
        profile = instaloader.Profile.from_username(self._loader.context, username)
        profile_data = ProfileData(
            username=profile.username,
            full_name=profile.full_name or "",
            bio=profile.biography,
            followers=profile.followers,
            following=profile.followees,
            posts_count=profile.mediacount,
            profile_pic_url=profile.profile_pic_url,
            is_verified=profile.is_verified,
            is_business=profile.is_business_account,
        )
        return profile, profile_data

    async def iter_posts(self) -> AsyncIterator[FeedItem]:
        if self._profile is None:
            raise RuntimeError("get_profile must be called before iter_posts")

        try:
            posts = await asyncio.to_thread(self._profile.get_posts)
        except Exception as e:
            yield FeedItem(error=classify_error(self.username, e))
            return

        while True:
            try:
                raw = await asyncio.to_thread(self._next_raw_post, posts)
            except Exception as e:
                yield FeedItem(error=classify_error(self.username, e))
                continue

            if raw is None:
                return
            yield FeedItem(post=raw)

    def _next_raw_post(self, posts) -> Optional[RawPost]:
        try:
            post = next(posts)
        except StopIteration:
            return None

        return RawPost(
            shortcode=post.shortcode,
            owner_username=post.owner_username,
            url=f"https://www.instagram.com/p/{post.shortcode}/",
            caption=post.caption,
            date=_as_utc(post.date_utc),
            is_video=bool(post.is_video),
            is_pinned=bool(getattr(post, "is_pinned", False)),
            is_sponsored=bool(post.is_sponsored),
            tagged_users=list(post.tagged_users or []),
            caption_mentions=list(post.caption_mentions or []),
            caption_hashtags=list(post.caption_hashtags or []),
            source=post,
        )

    async def get_coauthors(self, post: RawPost) -> List[str]:
        if post.source is None:
            return []
        producers = await asyncio.to_thread(
            lambda: list(post.source.coauthor_producers or [])
        )
        return [p.username for p in producers if getattr(p, "username", None)]
