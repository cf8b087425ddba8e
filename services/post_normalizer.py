"""Mapping of raw feed records onto the stored post shape."""

import logging
import re
from typing import Iterable, List, Optional

from core.models import PostData
from providers.instagram_provider import InstagramProvider, RawPost

logger = logging.getLogger(__name__)

# Hashtags that mark a paid partnership, compared case-insensitively
PARTNERSHIP_HASHTAGS = frozenset({"ad", "sponsored", "pub", "partenariat", "collab"})

HASHTAG_PATTERN = re.compile(r"(?<!&)#(\w+)")


def caption_hashtags(caption: Optional[str]) -> List[str]:
    return HASHTAG_PATTERN.findall(caption or "")


def has_partnership_hashtag(hashtags: Iterable[str]) -> bool:
    return any(tag.lstrip("#").lower() in PARTNERSHIP_HASHTAGS for tag in hashtags)


def sponsor_users_from(mentions: Iterable[str], owner: Optional[str]) -> List[str]:
    """Caption mentions minus the post owner, first occurrence order"""
    owner_key = (owner or "").lower()
    seen = set()
    result = []
    for mention in mentions:
        key = mention.lower()
        if not mention or key == owner_key or key in seen:
            continue
        seen.add(key)
        result.append(mention)
    return result


def post_url(shortcode: str, url: Optional[str] = None) -> str:
    return url or f"https://www.instagram.com/p/{shortcode}/"


async def normalize_post(raw: RawPost, provider: InstagramProvider) -> PostData:
    try:
        coauthors = await provider.get_coauthors(raw)
    except Exception as e:
        logger.warning(f"Co-author lookup failed for {raw.shortcode}: {e}")
        coauthors = []

    return PostData(
        shortcode=raw.shortcode,
        url=post_url(raw.shortcode, raw.url),
        caption=raw.caption,
        date=raw.date,
        is_video=raw.is_video,
        tagged_users=list(raw.tagged_users),
        caption_mentions=list(raw.caption_mentions),
        coauthors=[handle for handle in coauthors if handle],
        is_sponsored=bool(raw.is_sponsored)
        or has_partnership_hashtag(
            raw.caption_hashtags or caption_hashtags(raw.caption)
        ),
        sponsor_users=sponsor_users_from(raw.caption_mentions, raw.owner_username),
    )
