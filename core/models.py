"""
Core data models for the Scrape API

Tables (`Influencer`, `Post`, `ScrapeLog`) are SQLModel classes; the
normalized scrape output (`ProfileData`, `PostData`) and the progress events
streamed to clients (`ScrapeEvent`) are plain pydantic models and never stored.
"""

from datetime import datetime, timezone
from typing import List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field as PydanticField
from sqlalchemy import JSON, Column, DateTime, ForeignKey, String
from sqlmodel import SQLModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def influencer_id_for(username: str) -> str:
    return f"influencer_{username}"


def post_id_for(shortcode: str) -> str:
    return f"post_{shortcode}"


# Database tables


class Influencer(SQLModel, table=True):
    """
    Instagram profile, upserted on every successful scrape.

    `id`, `username` and `created_at` never change after the first insert.
    """

    id: str = Field(primary_key=True, max_length=300)
    username: str = Field(unique=True, index=True, max_length=255)
    full_name: str = Field(default="", max_length=255)
    bio: Optional[str] = Field(default=None)
    followers: int = Field(default=0)
    following: int = Field(default=0)
    posts_count: int = Field(default=0)
    profile_pic_url: Optional[str] = Field(default=None, max_length=2048)
    is_verified: bool = Field(default=False)
    is_business: bool = Field(default=False)
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class Post(SQLModel, table=True):
    """Instagram post; first scrape wins, later scrapes never overwrite it."""

    id: str = Field(primary_key=True, max_length=300)
    influencer_id: str = Field(
        sa_column=Column(
            String,
            ForeignKey("influencer.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )
    )
    shortcode: str = Field(unique=True, index=True, max_length=64)
    url: str = Field(max_length=2048)
    caption: Optional[str] = Field(default=None)
    date: datetime = Field(
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True)
    )
    is_video: bool = Field(default=False)
    tagged_users: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    caption_mentions: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    coauthors: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    is_sponsored: bool = Field(default=False)
    sponsor_users: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class ScrapeLog(SQLModel, table=True):
    """Append-only audit record of one scrape attempt"""

    __tablename__ = "scrape_log"

    id: str = Field(primary_key=True, max_length=64)
    influencer_id: str = Field(
        sa_column=Column(
            String,
            ForeignKey("influencer.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )
    )
    scraped_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True),
    )
    date_from: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    date_to: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    posts_count: int = Field(default=0)
    status: str = Field(max_length=16)  # success, partial, failed
    error_message: Optional[str] = Field(default=None)


# Normalized scrape output


class ProfileData(BaseModel):
    username: str
    full_name: str = ""
    bio: Optional[str] = None
    followers: Optional[int] = None
    following: Optional[int] = None
    posts_count: Optional[int] = None
    profile_pic_url: Optional[str] = None
    is_verified: Optional[bool] = None
    is_business: Optional[bool] = None


class PostData(BaseModel):
    shortcode: str
    url: str
    caption: Optional[str] = None
    date: Optional[datetime] = None
    is_video: bool = False
    tagged_users: List[str] = PydanticField(default_factory=list)
    caption_mentions: List[str] = PydanticField(default_factory=list)
    coauthors: List[str] = PydanticField(default_factory=list)
    is_sponsored: bool = False
    sponsor_users: List[str] = PydanticField(default_factory=list)


class ScrapeLogRecord(BaseModel):
    influencer_id: str
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    posts_count: int = 0
    status: Literal["success", "partial", "failed"] = "success"
    error_message: Optional[str] = None


# Streaming

ScrapeEventType = Literal["start", "progress", "success", "error"]


class ScrapeEventData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    posts_scraped: Optional[int] = PydanticField(default=None, alias="postsScraped")
    total_posts: Optional[int] = PydanticField(default=None, alias="totalPosts")
    current_post: Optional[str] = PydanticField(default=None, alias="currentPost")


class ScrapeEvent(BaseModel):
    """
    Progress event relayed to the live stream of one session.
    Not stored in database.
    """

    type: ScrapeEventType
    message: str
    timestamp: str
    data: Optional[ScrapeEventData] = None

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)
