"""Tests for proofchain.storage.database.Database."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from proofchain.models.errors import DuplicateVote
from proofchain.models.types import (
    ContentItem,
    SupportedToken,
    TokenType,
    Vote,
    VoteOption,
    empty_token_totals,
)

NOW = datetime(2025, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


def _content(content_id: str, numeric_id: int, **kwargs) -> ContentItem:
    fields = dict(
        id=content_id,
        content_id=numeric_id,
        title=f"Claim {content_id}",
        creator="0xCREATOR",
        submission_time=NOW,
        voting_start_time=NOW - timedelta(hours=1),
        voting_end_time=NOW + timedelta(hours=23),
    )
    fields.update(kwargs)
    return ContentItem(**fields)


def _vote(content_id: str, voter: str, option: VoteOption = VoteOption.REAL) -> Vote:
    return Vote(
        content_id=content_id,
        voter=voter,
        vote=option,
        token_type=TokenType.ETH,
        stake_amount="0.5",
        confidence=8,
        timestamp=NOW,
    )


class TestSaveAndRetrieveContent:
    def test_round_trip(self, temp_database):
        temp_database.save_content(
            _content("c-100", 100, description="Satellite image", content_type="image")
        )

        stored = temp_database.get_content("c-100")
        assert stored.content_id == 100
        assert stored.title == "Claim c-100"
        assert stored.creator == "0xcreator"
        assert stored.content_type == "image"
        assert stored.voting_end_time == NOW + timedelta(hours=23)
        assert stored.voting_end_time.tzinfo is not None
        assert stored.is_finalized is False
        assert stored.votes == []

    def test_lookup_by_numeric_id(self, temp_database):
        temp_database.save_content(_content("c-101", 987654321))
        assert temp_database.get_content_by_numeric_id(987654321).id == "c-101"
        assert temp_database.get_content_by_numeric_id(1) is None
        assert temp_database.get_content("missing") is None


class TestVotes:
    def test_insert_and_list(self, temp_database):
        temp_database.save_content(_content("c-200", 200))
        temp_database.insert_vote(_vote("c-200", "0xAAA"))

        votes = temp_database.get_votes("c-200")
        assert len(votes) == 1
        assert votes[0].voter == "0xaaa"
        assert votes[0].stake_amount == "0.5"
        assert votes[0].token_type is TokenType.ETH
        assert votes[0].id

    def test_second_vote_by_same_voter_is_rejected(self, temp_database):
        temp_database.save_content(_content("c-201", 201))
        temp_database.insert_vote(_vote("c-201", "0xAbC"))

        with pytest.raises(DuplicateVote):
            temp_database.insert_vote(_vote("c-201", "0xabc", VoteOption.FAKE))
        assert len(temp_database.get_votes("c-201")) == 1
        assert temp_database.get_votes("c-201")[0].vote is VoteOption.REAL

    def test_same_voter_may_vote_on_other_content(self, temp_database):
        temp_database.save_content(_content("c-202", 202))
        temp_database.save_content(_content("c-203", 203))
        temp_database.insert_vote(_vote("c-202", "0xA"))
        temp_database.insert_vote(_vote("c-203", "0xA"))
        assert len(temp_database.get_votes_by_voter("0xa")) == 2

    def test_reveal_is_compare_and_set(self, temp_database):
        temp_database.save_content(_content("c-204", 204))
        temp_database.insert_vote(
            Vote(
                content_id="c-204", voter="0xB", token_type=TokenType.USDC,
                stake_amount="10", commit_hash="0xfeed", revealed=False, timestamp=NOW,
            )
        )

        assert temp_database.reveal_vote("c-204", "0xb", VoteOption.FAKE, 6, "s") is True
        assert temp_database.reveal_vote("c-204", "0xb", VoteOption.REAL, 9, "s") is False
        vote = temp_database.get_vote("c-204", "0xB")
        assert vote.revealed is True
        assert vote.vote is VoteOption.FAKE
        assert vote.confidence == 6

    def test_reveal_after_finalization_is_refused(self, temp_database):
        temp_database.save_content(_content("c-205", 205))
        temp_database.insert_vote(
            Vote(
                content_id="c-205", voter="0xC", token_type=TokenType.USDC,
                stake_amount="10", commit_hash="0xbeef", revealed=False, timestamp=NOW,
            )
        )
        temp_database.finalize_content(
            "c-205",
            winning_option=None,
            consensus={},
            vote_distribution={},
            participants=[],
            total_usd_value=Decimal(0),
            finalized_at=NOW,
        )

        assert temp_database.reveal_vote("c-205", "0xc", VoteOption.REAL, 7, "s") is False
        vote = temp_database.get_vote("c-205", "0xC")
        assert vote.revealed is False
        assert vote.vote is None


class TestFinalizeContent:
    def _finalize(self, database, content_id, option):
        return database.finalize_content(
            content_id,
            winning_option=option,
            consensus={"verdict": option.name if option is not None else "NO_VOTES"},
            vote_distribution={
                VoteOption.FAKE: Decimal(0),
                VoteOption.REAL: Decimal("12.5"),
                VoteOption.ABSTAIN: Decimal(0),
            },
            participants=["0xa", "0xb"],
            total_usd_value=Decimal("2500"),
            finalized_at=NOW,
        )

    def test_only_first_writer_wins(self, temp_database):
        temp_database.save_content(_content("c-300", 300))

        assert self._finalize(temp_database, "c-300", VoteOption.REAL) is True
        assert self._finalize(temp_database, "c-300", VoteOption.FAKE) is False

        stored = temp_database.get_content("c-300")
        assert stored.is_finalized is True
        assert stored.winning_option is VoteOption.REAL
        assert stored.consensus == {"verdict": "REAL"}
        assert stored.participant_count == 2
        assert stored.vote_distribution[VoteOption.REAL] == Decimal("12.5")
        assert stored.total_usd_value == Decimal("2500")
        assert stored.finalized_at == NOW

    def test_null_winner_is_stored(self, temp_database):
        temp_database.save_content(_content("c-301", 301))
        assert self._finalize(temp_database, "c-301", None) is True
        assert temp_database.get_content("c-301").winning_option is None

    def test_claim_reward_requires_finalization_and_runs_once(self, temp_database):
        temp_database.save_content(_content("c-302", 302))
        assert temp_database.claim_reward("c-302", 160, NOW) is False

        self._finalize(temp_database, "c-302", VoteOption.REAL)
        assert temp_database.claim_reward("c-302", 160, NOW) is True
        assert temp_database.claim_reward("c-302", 160, NOW) is False
        stored = temp_database.get_content("c-302")
        assert stored.has_claimed_reward is True
        assert stored.claimed_reward == 160

    def test_stake_totals_by_token_are_stored(self, temp_database):
        temp_database.save_content(_content("c-303", 303))
        totals = empty_token_totals()
        totals[TokenType.USDFC] = Decimal("1000")
        totals[TokenType.ETH] = Decimal("0.5")

        temp_database.finalize_content(
            "c-303",
            winning_option=VoteOption.FAKE,
            consensus={},
            vote_distribution={},
            participants=["0xa"],
            total_usd_value=Decimal("2250"),
            finalized_at=NOW,
            total_staked_by_token=totals,
        )

        stored = temp_database.get_content("c-303").total_staked_by_token
        assert set(stored) == set(TokenType)
        assert stored[TokenType.USDFC] == Decimal("1000")
        assert stored[TokenType.ETH] == Decimal("0.5")
        assert stored[TokenType.BTC] == Decimal(0)

    def test_unfinalized_content_has_zero_stake_totals(self, temp_database):
        temp_database.save_content(_content("c-304", 304))
        stored = temp_database.get_content("c-304").total_staked_by_token
        assert all(amount == 0 for amount in stored.values())


class TestFindDueForFinalization:
    def test_uses_end_time_fallbacks(self, temp_database):
        temp_database.save_content(_content("open", 1))
        temp_database.save_content(_content("ended", 2, voting_end_time=NOW - timedelta(minutes=5)))
        temp_database.save_content(
            _content("legacy", 3, voting_end_time=None, voting_deadline=NOW - timedelta(hours=2))
        )
        temp_database.save_content(
            _content("reveal-only", 4, voting_end_time=None, reveal_deadline=NOW - timedelta(hours=1))
        )
        temp_database.save_content(_content("no-end", 5, voting_end_time=None))

        due = [item.id for item in temp_database.find_due_for_finalization(NOW)]
        assert due == ["legacy", "reveal-only", "ended"]

    def test_skips_finalized(self, temp_database):
        temp_database.save_content(_content("done", 6, voting_end_time=NOW - timedelta(hours=1)))
        temp_database.finalize_content(
            "done",
            winning_option=None,
            consensus={},
            vote_distribution={},
            participants=[],
            total_usd_value=Decimal(0),
            finalized_at=NOW,
        )
        assert temp_database.find_due_for_finalization(NOW) == []


class TestListContents:
    def test_pagination_and_filter(self, temp_database):
        for index in range(5):
            temp_database.save_content(
                _content(f"c-{index}", 400 + index, submission_time=NOW + timedelta(minutes=index))
            )
        temp_database.finalize_content(
            "c-0",
            winning_option=None,
            consensus={},
            vote_distribution={},
            participants=[],
            total_usd_value=Decimal(0),
            finalized_at=NOW,
        )

        items, total = temp_database.list_contents(skip=0, limit=2)
        assert total == 5
        assert [item.id for item in items] == ["c-4", "c-3"]

        items, _ = temp_database.list_contents(sort_order="asc", skip=2, limit=2)
        assert [item.id for item in items] == ["c-2", "c-3"]

        items, total = temp_database.list_contents(status="finalized")
        assert total == 1
        assert items[0].id == "c-0"

        _, total = temp_database.list_contents(status="unfinalized")
        assert total == 4

    def test_status_filters_follow_the_voting_window(self, temp_database):
        temp_database.save_content(
            _content("live", 500, voting_start_time=NOW - timedelta(hours=1),
                     voting_end_time=NOW + timedelta(hours=1))
        )
        temp_database.save_content(
            _content("upcoming", 501, voting_start_time=NOW + timedelta(hours=1),
                     voting_end_time=NOW + timedelta(hours=5))
        )
        temp_database.save_content(
            _content("no-window", 502, voting_start_time=None, voting_end_time=None)
        )
        temp_database.save_content(
            _content("ended", 503, voting_start_time=NOW - timedelta(hours=5),
                     voting_end_time=NOW - timedelta(minutes=1))
        )
        temp_database.save_content(
            _content("deadline-only", 504, voting_start_time=NOW - timedelta(hours=5),
                     voting_end_time=None, reveal_deadline=NOW)
        )

        def ids(status):
            items, _ = temp_database.list_contents(status=status, limit=50, now=NOW)
            return {item.id for item in items}

        assert ids("live") == {"live"}
        assert ids("pending") == {"upcoming", "no-window"}
        assert ids("expired") == {"ended", "deadline-only"}
        assert ids("finalized") == set()

    def test_unknown_status_is_rejected(self, temp_database):
        with pytest.raises(ValueError):
            temp_database.list_contents(status="archived", now=NOW)


class TestSupportedTokens:
    def test_upsert_and_update_price(self, temp_database):
        token = SupportedToken(
            token_type=TokenType.FIL,
            name="Filecoin",
            symbol="FIL",
            decimals=18,
            current_price_usd=Decimal("5"),
        )
        temp_database.upsert_supported_token(token)
        assert temp_database.get_supported_token(TokenType.FIL).current_price_usd == Decimal("5")

        assert temp_database.update_token_price(TokenType.FIL, Decimal("5.25"), NOW) is True
        stored = temp_database.get_supported_token(TokenType.FIL)
        assert stored.current_price_usd == Decimal("5.25")
        assert stored.last_price_update == NOW

        assert temp_database.update_token_price(TokenType.SOL, Decimal("1"), NOW) is False

    def test_active_filter(self, temp_database):
        for token_type, active in ((TokenType.DOT, True), (TokenType.SOL, False)):
            temp_database.upsert_supported_token(
                SupportedToken(
                    token_type=token_type,
                    name=token_type.name,
                    symbol=token_type.name,
                    decimals=10,
                    current_price_usd=Decimal("1"),
                    is_active=active,
                )
            )
        assert len(temp_database.list_supported_tokens()) == 2
        assert [t.token_type for t in temp_database.list_supported_tokens(active_only=True)] == [
            TokenType.DOT
        ]


class TestLogMetric:
    def test_metric_total(self, temp_database):
        temp_database.log_metric("votes_submitted", 1)
        temp_database.log_metric("votes_submitted", 2)
        assert temp_database.metric_total("votes_submitted") == 3
        assert temp_database.metric_total("unknown") == 0
