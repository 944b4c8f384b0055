from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable

from proofchain.models.types import ContentItem, ContentStatus

Clock = Callable[[], datetime]

DEFAULT_CLAIM_DELAY = timedelta(hours=48)


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Naive datetimes are taken to be UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class VotingWindowPolicy:
    """Time-boundary decisions for a content item. Pure apart from the clock."""

    def __init__(
        self,
        clock: Clock = utc_now,
        claim_delay: timedelta = DEFAULT_CLAIM_DELAY,
    ) -> None:
        self._clock = clock
        self._claim_delay = claim_delay

    def now(self) -> datetime:
        return as_utc(self._clock())

    @staticmethod
    def voting_end(content: ContentItem) -> datetime | None:
        for value in (
            content.voting_end_time,
            content.voting_deadline,
            content.reveal_deadline,
        ):
            if value is not None:
                return as_utc(value)
        return None

    def has_ended(self, content: ContentItem) -> bool:
        end = self.voting_end(content)
        if end is None:
            return False
        return self.now() >= end

    def claim_available_at(self, content: ContentItem) -> datetime | None:
        end = self.voting_end(content)
        if end is None:
            return None
        return end + self._claim_delay

    def can_claim_reward(self, content: ContentItem) -> bool:
        if not content.is_finalized:
            return False
        available_at = self.claim_available_at(content)
        return available_at is not None and self.now() >= available_at

    def time_remaining(self, content: ContentItem) -> timedelta:
        end = self.voting_end(content)
        if end is None:
            return timedelta(0)
        return max(timedelta(0), end - self.now())

    def status(self, content: ContentItem) -> ContentStatus:
        if content.is_finalized:
            return ContentStatus.FINALIZED
        if self.has_ended(content):
            return ContentStatus.EXPIRED
        start = as_utc(content.voting_start_time)
        end = self.voting_end(content)
        now = self.now()
        if start is not None and end is not None and start <= now <= end:
            return ContentStatus.LIVE
        return ContentStatus.PENDING
