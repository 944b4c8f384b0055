from __future__ import annotations

import logging

from proofchain.consensus.window import VotingWindowPolicy
from proofchain.models.errors import AlreadyClaimed, ClaimWindowNotOpen, NotFinalized
from proofchain.models.types import ClaimResult, ContentItem

logger = logging.getLogger(__name__)

BASE_REWARD = 100
PARTICIPATION_BONUS_PER_VOTER = 5
CONSENSUS_BONUS = 50
QUALITY_BONUS = 25
QUALITY_VOTE_COUNT = 10


class RewardCalculator:
    def __init__(self, database: "Database", policy: VotingWindowPolicy) -> None:
        self._database = database
        self._policy = policy

    @staticmethod
    def reward(content: ContentItem) -> int:
        """Points earned by a finalized content item; 0 before finalization."""
        if not content.is_finalized:
            return 0
        reward = BASE_REWARD + content.participant_count * PARTICIPATION_BONUS_PER_VOTER
        if content.winning_option is not None:
            reward += CONSENSUS_BONUS
        if len(content.revealed_votes) > QUALITY_VOTE_COUNT:
            reward += QUALITY_BONUS
        return reward

    def reward_info(self, content: ContentItem) -> dict:
        available_at = self._policy.claim_available_at(content)
        hours_until = 0
        if available_at is not None:
            remaining = (available_at - self._policy.now()).total_seconds()
            hours_until = max(0, int(-(-remaining // 3600)))
        return {
            "canClaimReward": (
                self._policy.can_claim_reward(content) and not content.has_claimed_reward
            ),
            "hasClaimedReward": content.has_claimed_reward,
            "claimedReward": content.claimed_reward,
            "estimatedReward": self.reward(content),
            "hoursUntilClaim": hours_until,
            "claimAvailableAt": available_at.isoformat() if available_at else None,
        }

    def claim_reward(self, content: ContentItem) -> ClaimResult:
        if not content.is_finalized:
            raise NotFinalized("Voting results have not been finalized yet")
        if content.has_claimed_reward:
            raise AlreadyClaimed("Reward has already been claimed for this content")
        if not self._policy.can_claim_reward(content):
            available_at = self._policy.claim_available_at(content)
            raise ClaimWindowNotOpen(
                "Reward cannot be claimed before "
                f"{available_at.isoformat() if available_at else 'voting ends'}"
            )

        reward = self.reward(content)
        claimed_at = self._policy.now()
        if not self._database.claim_reward(content.id, reward, claimed_at):
            raise AlreadyClaimed("Reward has already been claimed for this content")

        logger.info("Reward of %d points claimed for content %s", reward, content.id)
        self._database.log_metric("rewards_claimed", 1)
        return ClaimResult(content_id=content.id, reward=reward, claimed_at=claimed_at)
