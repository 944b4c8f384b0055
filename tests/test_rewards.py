"""Tests for proofchain.consensus.rewards.RewardCalculator."""
from __future__ import annotations

import pytest

from proofchain.consensus.rewards import RewardCalculator
from proofchain.models.errors import AlreadyClaimed, ClaimWindowNotOpen, NotFinalized
from proofchain.models.types import ContentItem, VoteOption


def _finalized(services, make_content, add_vote, clock, voters):
    content = make_content()
    for index, option in enumerate(voters):
        add_vote(content, f"0x{index:040x}", option, "100")
    clock.advance(days=1)
    services.engine.finalize_if_due(content)
    return services.database.get_content(content.id)


class TestRewardFormula:
    def test_unfinalized_content_earns_nothing(self):
        content = ContentItem(id="x", title="t", creator="0xc",
                              voting_start_time=None, voting_end_time=None)
        assert RewardCalculator.reward(content) == 0

    def test_base_participation_and_consensus(self, services, make_content, add_vote, clock):
        content = _finalized(
            services, make_content, add_vote, clock, [VoteOption.REAL, VoteOption.REAL]
        )
        assert services.rewards.reward(content) == 100 + 2 * 5 + 50

    def test_no_consensus_bonus_on_tie(self, services, make_content, add_vote, clock):
        content = _finalized(
            services, make_content, add_vote, clock, [VoteOption.REAL, VoteOption.FAKE]
        )
        assert content.winning_option is None
        assert services.rewards.reward(content) == 100 + 2 * 5

    def test_quality_bonus_above_ten_votes(self, services, make_content, add_vote, clock):
        content = _finalized(
            services, make_content, add_vote, clock, [VoteOption.FAKE] * 11
        )
        assert services.rewards.reward(content) == 100 + 11 * 5 + 50 + 25

    def test_no_votes(self, services, make_content, clock):
        content = make_content()
        clock.advance(days=1)
        services.engine.finalize_if_due(content)
        assert services.rewards.reward(services.database.get_content(content.id)) == 100


class TestClaimReward:
    def test_claim_lifecycle(self, services, make_content, add_vote, clock):
        content = _finalized(services, make_content, add_vote, clock, [VoteOption.REAL])

        # Voting ended one hour ago; the claim window opens 48 hours after the end.
        with pytest.raises(ClaimWindowNotOpen):
            services.rewards.claim_reward(content)

        clock.advance(hours=47)
        result = services.rewards.claim_reward(content)
        assert result.reward == 100 + 5 + 50
        assert result.claimed_at == clock()

        stored = services.database.get_content(content.id)
        assert stored.has_claimed_reward is True
        assert stored.claimed_reward == result.reward

        with pytest.raises(AlreadyClaimed):
            services.rewards.claim_reward(stored)

    def test_stale_copy_cannot_claim_twice(self, services, make_content, add_vote, clock):
        content = _finalized(services, make_content, add_vote, clock, [VoteOption.REAL])
        clock.advance(hours=48)

        services.rewards.claim_reward(content)
        with pytest.raises(AlreadyClaimed):
            services.rewards.claim_reward(content)
        assert services.database.metric_total("rewards_claimed") == 1

    def test_requires_finalization(self, services, make_content, clock):
        content = make_content()
        clock.advance(days=5)
        with pytest.raises(NotFinalized):
            services.rewards.claim_reward(content)

    def test_reward_info(self, services, make_content, add_vote, clock):
        content = _finalized(services, make_content, add_vote, clock, [VoteOption.REAL])
        info = services.rewards.reward_info(content)
        assert info["canClaimReward"] is False
        assert info["hoursUntilClaim"] == 47
        assert info["estimatedReward"] == 155

        clock.advance(hours=47)
        info = services.rewards.reward_info(content)
        assert info["canClaimReward"] is True
        assert info["hoursUntilClaim"] == 0
