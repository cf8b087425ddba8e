"""
Persistence adapter for scrape results.

Write semantics:
- Influencers are upserted by `username`: the first scrape inserts the row,
  later scrapes overwrite the mutable attributes and refresh `updated_at`.
  `id`, `username` and `created_at` are never touched by an update.
- Posts are insert-or-skip by `shortcode`: once stored, a post is never
  overwritten by a later scrape.
- Scrape logs are append-only.

The conflict clauses are dialect specific; SQLite and PostgreSQL are supported.
Methods never commit; the caller owns the transaction.
"""

import logging
import uuid
from typing import List, Optional

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import delete
from sqlmodel import select

from core.models import (
    Influencer,
    Post,
    PostData,
    ProfileData,
    ScrapeLog,
    ScrapeLogRecord,
    influencer_id_for,
    post_id_for,
    utcnow,
)

logger = logging.getLogger(__name__)


def _insert_for(session: AsyncSession, table):
    dialect = session.bind.dialect.name if session.bind is not None else "sqlite"
    if dialect == "postgresql":
        return postgresql.insert(table)
    if dialect == "sqlite":
        return sqlite.insert(table)
    raise NotImplementedError(f"Upserts are not supported on {dialect}")


class ScrapeRepository:
    """Writes and reads the influencer, post and scrape_log tables"""

    async def upsert_profile(self, session: AsyncSession, profile: ProfileData) -> str:
        """Insert or update an influencer; returns its id"""
        influencer_id = influencer_id_for(profile.username)
        now = utcnow()
        values = {
            "full_name": profile.full_name or "",
            "bio": profile.bio,
            "followers": profile.followers or 0,
            "following": profile.following or 0,
            "posts_count": profile.posts_count or 0,
            "profile_pic_url": profile.profile_pic_url,
            "is_verified": bool(profile.is_verified),
            "is_business": bool(profile.is_business),
            "updated_at": now,
        }

        stmt = _insert_for(session, Influencer.__table__).values(
            id=influencer_id, username=profile.username, created_at=now, **values
        )
        stmt = stmt.on_conflict_do_update(index_elements=["username"], set_=values)
        await session.execute(stmt)

        logger.debug(f"Upserted influencer @{profile.username}")
        return influencer_id

    async def insert_post_if_absent(
        self, session: AsyncSession, influencer_id: str, post: PostData
    ) -> bool:
        """Insert a post unless its shortcode is already stored"""
        stmt = _insert_for(session, Post.__table__).values(
            id=post_id_for(post.shortcode),
            influencer_id=influencer_id,
            shortcode=post.shortcode,
            url=post.url,
            caption=post.caption,
            date=post.date or utcnow(),
            is_video=post.is_video,
            tagged_users=list(post.tagged_users),
            caption_mentions=list(post.caption_mentions),
            coauthors=list(post.coauthors),
            is_sponsored=post.is_sponsored,
            sponsor_users=list(post.sponsor_users),
            created_at=utcnow(),
        )
        stmt = stmt.on_conflict_do_nothing(index_elements=["shortcode"])
        result = await session.execute(stmt)

        inserted = bool(result.rowcount)
        if not inserted:
            logger.debug(f"Post {post.shortcode} already stored, skipped")
        return inserted

    async def append_scrape_log(
        self, session: AsyncSession, record: ScrapeLogRecord
    ) -> ScrapeLog:
        now = utcnow()
        log = ScrapeLog(
            id=f"log_{uuid.uuid4().hex}",
            influencer_id=record.influencer_id,
            scraped_at=now,
            date_from=record.date_from or now,
            date_to=record.date_to or now,
            posts_count=record.posts_count,
            status=record.status,
            error_message=record.error_message,
        )
        session.add(log)
        await session.flush()
        return log

    async def delete_influencer(self, session: AsyncSession, influencer_id: str) -> bool:
        """Delete an influencer; its posts and scrape logs go with it"""
        result = await session.execute(
            delete(Influencer).where(Influencer.id == influencer_id)
        )
        return bool(result.rowcount)

    async def get_influencer_by_username(
        self, session: AsyncSession, username: str
    ) -> Optional[Influencer]:
        result = await session.execute(
            select(Influencer).where(Influencer.username == username)
        )
        return result.scalars().first()

    async def get_post_by_shortcode(
        self, session: AsyncSession, shortcode: str
    ) -> Optional[Post]:
        result = await session.execute(select(Post).where(Post.shortcode == shortcode))
        return result.scalars().first()

    async def list_posts(self, session: AsyncSession, influencer_id: str) -> List[Post]:
        result = await session.execute(
            select(Post)
            .where(Post.influencer_id == influencer_id)
            .order_by(Post.date.desc())
        )
        return list(result.scalars().all())

    async def list_scrape_logs(
        self, session: AsyncSession, influencer_id: str
    ) -> List[ScrapeLog]:
        result = await session.execute(
            select(ScrapeLog)
            .where(ScrapeLog.influencer_id == influencer_id)
            .order_by(ScrapeLog.scraped_at.desc())
        )
        return list(result.scalars().all())
