"""
Test doubles for the Instagram provider.

`FakeInstagramProvider` replays a scripted feed: each entry is either a
`RawPost` or a `ScraperAPIException` that stands in for a failed item.
"""

from datetime import datetime
from typing import AsyncIterator, Dict, Iterable, List, Optional

from core.exceptions import ScraperAPIException
from core.models import ProfileData
from providers.instagram_provider import FeedItem, InstagramProvider, RawPost


def make_post(
    shortcode: str,
    date: Optional[datetime] = None,
    caption: Optional[str] = None,
    pinned: bool = False,
    sponsored: bool = False,
    owner: str = "alice",
    mentions: Iterable[str] = (),
    hashtags: Iterable[str] = (),
    tagged: Iterable[str] = (),
    is_video: bool = False,
) -> RawPost:
    return RawPost(
        shortcode=shortcode,
        owner_username=owner,
        url=f"https://www.instagram.com/p/{shortcode}/",
        caption=caption,
        date=date,
        is_video=is_video,
        is_pinned=pinned,
        is_sponsored=sponsored,
        tagged_users=list(tagged),
        caption_mentions=list(mentions),
        caption_hashtags=list(hashtags),
    )


class FakeInstagramProvider(InstagramProvider):
    def __init__(
        self,
        profile: Optional[ProfileData] = None,
        feed: Iterable = (),
        coauthors: Optional[Dict[str, List[str]]] = None,
        profile_error: Optional[Exception] = None,
        session_loaded: bool = True,
    ):
        self.profile = profile or ProfileData(username="alice", full_name="Alice")
        self.feed = list(feed)
        self.coauthors = coauthors or {}
        self.profile_error = profile_error
        self.session_loaded = session_loaded

        self.loaded_sessions: List[str] = []
        self.requested_usernames: List[str] = []
        self.consumed = 0
        self.closed = False

    async def load_session(self, session_username: str) -> bool:
        self.loaded_sessions.append(session_username)
        return self.session_loaded

    async def get_profile(self, username: str) -> ProfileData:
        self.requested_usernames.append(username)
        if self.profile_error is not None:
            raise self.profile_error
        return self.profile

    async def iter_posts(self) -> AsyncIterator[FeedItem]:
        try:
            for entry in self.feed:
                self.consumed += 1
                if isinstance(entry, ScraperAPIException):
                    yield FeedItem(error=entry)
                else:
                    yield FeedItem(post=entry)
        finally:
            self.closed = True

    async def get_coauthors(self, post: RawPost) -> List[str]:
        coauthors = self.coauthors.get(post.shortcode, [])
        if isinstance(coauthors, Exception):
            raise coauthors
        return coauthors
