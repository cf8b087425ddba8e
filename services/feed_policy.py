"""
Feed termination policy.

The orchestrator walks a profile feed newest-first and asks `FeedPolicy` what
to do with each step. The policy holds the counters; it knows nothing about how
the feed is paginated.

Rules:
- Item errors: an authentication error aborts at once. Other errors are
  tolerated until `max_consecutive_errors` arrive in a row, then the walk
  stops with what was collected. Any unpinned post resets the count.
- Pinned posts are skipped and touch no counter.
- Posts outside `[date_from, date_to]` are skipped; `max_consecutive_out_of_range`
  of them in a row means the feed has left the window and the walk stops.
  An in-window post resets the count. Posts without a date count as in-window.
- Collection stops once `max_posts` posts are kept.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from core.exceptions import AuthenticationRequiredError

MAX_POSTS = 100
MAX_CONSECUTIVE_ERRORS = 3
MAX_CONSECUTIVE_OUT_OF_RANGE = 4


class FeedDecision(str, Enum):
    COLLECT = "collect"
    SKIP = "skip"
    STOP = "stop"
    ABORT = "abort"


class StopReason(str, Enum):
    EXHAUSTED = "exhausted"
    LIMIT_REACHED = "limit_reached"
    DATE_WINDOW = "date_window"
    ERROR_THRESHOLD = "error_threshold"


class WindowPosition(str, Enum):
    BEFORE = "before"
    INSIDE = "inside"
    AFTER = "after"


@dataclass
class FeedPolicy:
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    max_posts: int = MAX_POSTS
    max_consecutive_errors: int = MAX_CONSECUTIVE_ERRORS
    max_consecutive_out_of_range: int = MAX_CONSECUTIVE_OUT_OF_RANGE

    consecutive_errors: int = 0
    consecutive_out_of_range: int = 0
    skipped_pinned: int = 0
    skipped_out_of_range: int = 0
    stop_reason: StopReason = StopReason.EXHAUSTED

    def on_error(self, error: Exception) -> FeedDecision:
        if isinstance(error, AuthenticationRequiredError):
            return FeedDecision.ABORT

        self.consecutive_errors += 1
        if self.consecutive_errors >= self.max_consecutive_errors:
            self.stop_reason = StopReason.ERROR_THRESHOLD
            return FeedDecision.STOP
        return FeedDecision.SKIP

    def on_post(self, is_pinned: bool, date: Optional[datetime]) -> FeedDecision:
        if is_pinned:
            self.skipped_pinned += 1
            return FeedDecision.SKIP

        self.consecutive_errors = 0

        if self.position(date) is not WindowPosition.INSIDE:
            self.consecutive_out_of_range += 1
            self.skipped_out_of_range += 1
            if self.consecutive_out_of_range >= self.max_consecutive_out_of_range:
                self.stop_reason = StopReason.DATE_WINDOW
                return FeedDecision.STOP
            return FeedDecision.SKIP

        self.consecutive_out_of_range = 0
        return FeedDecision.COLLECT

    def on_collected(self, collected: int) -> FeedDecision:
        if collected >= self.max_posts:
            self.stop_reason = StopReason.LIMIT_REACHED
            return FeedDecision.STOP
        return FeedDecision.COLLECT

    def position(self, date: Optional[datetime]) -> WindowPosition:
        if date is None:
            return WindowPosition.INSIDE
        if self.date_to is not None and date > self.date_to:
            return WindowPosition.AFTER
        if self.date_from is not None and date < self.date_from:
            return WindowPosition.BEFORE
        return WindowPosition.INSIDE
