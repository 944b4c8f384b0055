"""Tests for proofchain.consensus.window.VotingWindowPolicy."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

from proofchain.consensus.window import VotingWindowPolicy
from proofchain.models.types import ContentItem, ContentStatus

NOW = datetime(2025, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


def _policy(now: datetime = NOW) -> VotingWindowPolicy:
    return VotingWindowPolicy(clock=lambda: now)


def _content(start_offset_h: float | None, end_offset_h: float | None, **kwargs) -> ContentItem:
    return ContentItem(
        id="c1",
        title="t",
        creator="0xc",
        voting_start_time=NOW + timedelta(hours=start_offset_h) if start_offset_h is not None else None,
        voting_end_time=NOW + timedelta(hours=end_offset_h) if end_offset_h is not None else None,
        **kwargs,
    )


class TestHasEnded:
    def test_open_window(self):
        assert _policy().has_ended(_content(-1, 1)) is False

    def test_end_boundary_counts_as_ended(self):
        assert _policy().has_ended(_content(-2, 0)) is True

    def test_past_end(self):
        assert _policy().has_ended(_content(-25, -1)) is True

    def test_falls_back_to_legacy_deadlines(self):
        legacy = _content(-5, None, voting_deadline=NOW - timedelta(minutes=1))
        assert _policy().has_ended(legacy) is True

        reveal_only = _content(-5, None, reveal_deadline=NOW + timedelta(minutes=1))
        assert _policy().has_ended(reveal_only) is False

    def test_first_present_field_wins(self):
        content = _content(
            -5, 1, voting_deadline=NOW - timedelta(hours=3), reveal_deadline=NOW - timedelta(hours=2)
        )
        assert _policy().has_ended(content) is False

    def test_no_end_time_never_ends(self):
        assert _policy().has_ended(_content(-5, None)) is False

    def test_naive_datetimes_are_utc(self):
        content = ContentItem(
            id="c2", title="t", creator="0xc",
            voting_start_time=datetime(2025, 6, 14, 12, 0),
            voting_end_time=datetime(2025, 6, 15, 11, 59),
        )
        assert _policy().has_ended(content) is True


class TestCanClaimReward:
    def test_requires_finalization(self):
        assert _policy().can_claim_reward(_content(-100, -72)) is False

    def test_requires_48_hours_after_end(self):
        policy = _policy()
        assert policy.can_claim_reward(_content(-50, -47, is_finalized=True)) is False
        assert policy.can_claim_reward(_content(-50, -48, is_finalized=True)) is True

    def test_claim_available_at(self):
        content = _content(-2, -1)
        assert _policy().claim_available_at(content) == NOW + timedelta(hours=47)


class TestStatus:
    def test_status_transitions(self):
        policy = _policy()
        assert policy.status(_content(1, 2)) is ContentStatus.PENDING
        assert policy.status(_content(-1, 2)) is ContentStatus.LIVE
        assert policy.status(_content(-3, -1)) is ContentStatus.EXPIRED
        assert policy.status(_content(-3, -1, is_finalized=True)) is ContentStatus.FINALIZED

    def test_stable_under_repeated_calls(self):
        policy = _policy()
        content = _content(-1, 2)
        assert {policy.status(content) for _ in range(5)} == {ContentStatus.LIVE}

    def test_time_remaining(self):
        policy = _policy()
        assert policy.time_remaining(_content(-1, 2)) == timedelta(hours=2)
        assert policy.time_remaining(_content(-3, -1)) == timedelta(0)
