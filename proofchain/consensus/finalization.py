from __future__ import annotations

import logging

from proofchain.consensus.aggregator import ConsensusAggregator, serialize_consensus
from proofchain.consensus.window import VotingWindowPolicy
from proofchain.models.types import ContentItem, FinalizationOutcome

logger = logging.getLogger(__name__)


def unique_participants(voters: list[str]) -> list[str]:
    """Case-insensitive de-duplication, keeping first-seen order."""
    seen: dict[str, None] = {}
    for voter in voters:
        seen.setdefault(voter.lower(), None)
    return list(seen)


class FinalizationEngine:
    """Closes voting on a content item and persists its verdict exactly once.

    Both the periodic sweep and finalize-on-read go through
    :meth:`finalize_if_due`. The write is a compare-and-set on
    ``is_finalized`` so a concurrent attempt that loses simply returns ``None``.
    """

    def __init__(
        self,
        database: "Database",
        aggregator: ConsensusAggregator,
        policy: VotingWindowPolicy,
    ) -> None:
        self._database = database
        self._aggregator = aggregator
        self._policy = policy

    @property
    def policy(self) -> VotingWindowPolicy:
        return self._policy

    def finalize_if_due(self, content: ContentItem) -> FinalizationOutcome | None:
        if content.is_finalized:
            return None
        if not self._policy.has_ended(content):
            return None

        votes = self._database.get_votes(content.id)
        revealed = [v for v in votes if v.revealed and v.vote is not None]
        result = self._aggregator.aggregate(votes)
        participants = unique_participants([v.voter for v in revealed])
        finalized_at = self._policy.now()

        applied = self._database.finalize_content(
            content.id,
            winning_option=result.winning_option,
            consensus=serialize_consensus(result),
            vote_distribution=result.vote_distribution,
            participants=participants,
            total_usd_value=result.total_usd_value,
            total_staked_by_token=result.staked_by_token,
            finalized_at=finalized_at,
        )
        if not applied:
            logger.info("Content %s was finalized concurrently, skipping", content.id)
            return None

        if not revealed:
            logger.info(
                "No votes found for content %s, finalized with no result", content.id
            )
        else:
            logger.info(
                "Content %s finalized: verdict=%s weight=%s participants=%d",
                content.id,
                result.verdict.value if result.verdict else None,
                result.total_weight,
                len(participants),
            )
        self._database.log_metric("contents_finalized", 1)
        return FinalizationOutcome(
            content_id=content.id,
            result=result,
            participants=participants,
            finalized_at=finalized_at,
        )

    def finalize_expired(self) -> int:
        """Sweep every expired, unfinalized item. One item's failure does not stop the rest."""
        due = self._database.find_due_for_finalization(self._policy.now())
        logger.info("Found %d content items ready for finalization", len(due))

        finalized = 0
        for content in due:
            try:
                if self.finalize_if_due(content) is not None:
                    finalized += 1
            except Exception as exc:
                logger.error("Error finalizing content %s: %s", content.id, exc)
        return finalized

    def finalization_status(self, content: ContentItem) -> dict:
        voting_ended = self._policy.has_ended(content)
        return {
            "contentId": content.content_id if content.content_id is not None else content.id,
            "votingEnded": voting_ended,
            "isFinalized": content.is_finalized,
            "canFinalize": voting_ended and not content.is_finalized,
            "status": self._policy.status(content).value,
            "timeRemaining": int(self._policy.time_remaining(content).total_seconds()),
            "votingSystem": "simple" if content.voting_end_time is not None else "legacy",
            "results": (
                {
                    "winningOption": (
                        int(content.winning_option)
                        if content.winning_option is not None
                        else None
                    ),
                    "consensus": content.consensus,
                    "totalVotes": len(content.revealed_votes),
                    "participantCount": content.participant_count,
                    "finalizedAt": (
                        content.finalized_at.isoformat() if content.finalized_at else None
                    ),
                }
                if content.is_finalized
                else None
            ),
        }
