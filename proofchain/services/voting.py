from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta

from proofchain.consensus.commit_reveal import verify_commit
from proofchain.consensus.weighting import quadratic_weight
from proofchain.consensus.window import VotingWindowPolicy, as_utc
from proofchain.models.errors import (
    AlreadyRevealed,
    CommitMismatch,
    InvalidStakeAmount,
    InvalidVote,
    InvalidVotingWindow,
    ProofChainError,
    TokenInactive,
    UnknownTokenType,
    VoteNotFound,
    VotingClosed,
    VotingNotStarted,
)
from proofchain.models.types import ContentItem, ContentStatus, Vote, VoteOption
from proofchain.pricing.converter import PriceConverter, parse_amount
from proofchain.pricing.price_source import parse_token_type
from proofchain.storage.ids import numeric_id_for, resolve_content

logger = logging.getLogger(__name__)


def parse_vote_option(value: object) -> VoteOption:
    try:
        return VoteOption(int(value))
    except (TypeError, ValueError):
        raise InvalidVote(f"Invalid vote option: {value!r}") from None


class VotingService:
    """Content submission and vote intake (simple voting and legacy commit-reveal)."""

    def __init__(
        self,
        database: "Database",
        converter: PriceConverter,
        policy: VotingWindowPolicy,
        min_confidence: int = 1,
        max_confidence: int = 10,
        confidence_scale: int = 10,
        default_voting_period: timedelta = timedelta(hours=24),
    ) -> None:
        self._database = database
        self._converter = converter
        self._policy = policy
        self._min_confidence = min_confidence
        self._max_confidence = max_confidence
        self._confidence_scale = confidence_scale
        self._default_period = default_voting_period

    def create_content(
        self,
        title: str,
        creator: str,
        description: str = "",
        content_type: str = "text",
        content_url: str = "",
        voting_start_time: datetime | None = None,
        voting_end_time: datetime | None = None,
        content_id: int | None = None,
    ) -> ContentItem:
        if not title or not title.strip():
            raise InvalidVote("Title is required")
        if not creator:
            raise InvalidVote("Creator address is required")

        now = self._policy.now()
        start = as_utc(voting_start_time) or now
        end = as_utc(voting_end_time) or start + self._default_period
        if start >= end:
            raise InvalidVotingWindow("Voting start time must be before voting end time")

        storage_id = uuid.uuid4().hex
        content = ContentItem(
            id=storage_id,
            content_id=content_id if content_id is not None else numeric_id_for(storage_id),
            title=title.strip(),
            description=description,
            content_type=content_type,
            content_url=content_url,
            creator=creator.lower(),
            submission_time=now,
            voting_start_time=start,
            voting_end_time=end,
        )
        self._database.save_content(content)
        logger.info("Created content %s (#%s): %s", content.id, content.content_id, content.title)
        return content

    def _check_window(self, content: ContentItem) -> None:
        status = self._policy.status(content)
        if status is ContentStatus.PENDING:
            raise VotingNotStarted("Voting has not started yet")
        if status is not ContentStatus.LIVE:
            raise VotingClosed("Voting period has ended")

    def _check_confidence(self, confidence: object) -> int:
        try:
            value = int(confidence)
        except (TypeError, ValueError):
            raise InvalidVote(f"Invalid confidence: {confidence!r}") from None
        if not self._min_confidence <= value <= self._max_confidence:
            raise InvalidVote(
                f"Confidence must be between {self._min_confidence} and {self._max_confidence}"
            )
        return value

    def _check_stake(self, token_type: object, stake_amount: object) -> tuple:
        token_type = parse_token_type(token_type)
        token = self._database.get_supported_token(token_type)
        if token is None:
            raise UnknownTokenType(token_type)
        if not token.is_active:
            raise TokenInactive(f"{token.symbol} is not accepted for staking")

        amount = self._converter.check_precision(token_type, stake_amount)
        if amount <= 0:
            raise InvalidStakeAmount("Stake amount must be positive")
        if amount < parse_amount(token.min_stake_amount):
            raise InvalidStakeAmount(
                f"Minimum stake for {token.symbol} is {token.min_stake_amount}"
            )
        return token_type, str(stake_amount).strip()

    def submit_vote(
        self,
        content_ref: object,
        voter: str,
        vote: object,
        token_type: object,
        stake_amount: object,
        confidence: object,
    ) -> Vote:
        if not voter:
            raise InvalidVote("Voter address is required")
        content = resolve_content(self._database, content_ref)
        self._check_window(content)
        option = parse_vote_option(vote)
        confidence = self._check_confidence(confidence)
        token, amount = self._check_stake(token_type, stake_amount)

        record = self._database.insert_vote(
            Vote(
                content_id=content.id,
                voter=voter,
                vote=option,
                token_type=token,
                stake_amount=amount,
                confidence=confidence,
                timestamp=self._policy.now(),
                revealed=True,
            )
        )
        self._database.log_metric("votes_submitted", 1)
        logger.info("Vote %s recorded for content %s by %s", option.name, content.id, record.voter)
        return record

    def commit_vote(
        self,
        content_ref: object,
        voter: str,
        commit_hash: str,
        token_type: object,
        stake_amount: object,
    ) -> Vote:
        if not voter:
            raise InvalidVote("Voter address is required")
        if not commit_hash:
            raise InvalidVote("Commit hash is required")
        content = resolve_content(self._database, content_ref)
        self._check_window(content)
        token, amount = self._check_stake(token_type, stake_amount)

        record = self._database.insert_vote(
            Vote(
                content_id=content.id,
                voter=voter,
                token_type=token,
                stake_amount=amount,
                timestamp=self._policy.now(),
                commit_hash=commit_hash,
                revealed=False,
            )
        )
        self._database.log_metric("votes_committed", 1)
        logger.info("Commit recorded for content %s by %s", content.id, record.voter)
        return record

    def reveal_vote(
        self,
        content_ref: object,
        voter: str,
        vote: object,
        confidence: object,
        salt: str,
    ) -> Vote:
        content = resolve_content(self._database, content_ref)
        if content.is_finalized:
            raise VotingClosed("Voting has been finalized")
        existing = self._database.get_vote(content.id, voter)
        if existing is None or existing.commit_hash is None:
            raise VoteNotFound(f"No commit found for {voter} on content {content.id}")
        if existing.revealed:
            raise AlreadyRevealed("Vote has already been revealed")

        option = parse_vote_option(vote)
        confidence = self._check_confidence(confidence)
        if not salt or not verify_commit(existing.commit_hash, int(option), confidence, salt):
            raise CommitMismatch("Revealed vote does not match the committed hash")

        if not self._database.reveal_vote(content.id, voter, option, confidence, salt):
            # Lost a race with finalization or a concurrent reveal.
            if self._database.get_content(content.id).is_finalized:
                raise VotingClosed("Voting has been finalized")
            raise AlreadyRevealed("Vote has already been revealed")

        logger.info("Vote revealed for content %s by %s", content.id, voter.lower())
        return self._database.get_vote(content.id, voter)

    def voting_history(self, voter: str) -> list[dict]:
        history = []
        for vote in self._database.get_votes_by_voter(voter):
            content = self._database.get_content(vote.content_id)
            weight = None
            if vote.revealed and vote.confidence is not None:
                try:
                    usd_value = self._converter.usd_value(vote.token_type, vote.stake_amount)
                    weight = float(
                        quadratic_weight(usd_value, vote.confidence, self._confidence_scale)
                    )
                except ProofChainError as exc:
                    logger.warning("Could not weigh vote %s: %s", vote.id, exc)

            winning = content.winning_option if content else None
            history.append({
                "contentId": content.content_id if content else vote.content_id,
                "title": content.title if content else f"Content {vote.content_id}",
                "timestamp": vote.timestamp.isoformat() if vote.timestamp else None,
                "tokenType": int(vote.token_type),
                "stakeAmount": vote.stake_amount,
                "vote": int(vote.vote) if vote.vote is not None else None,
                "confidence": vote.confidence,
                "quadraticWeight": weight,
                "isRevealed": vote.revealed,
                "isFinalized": content.is_finalized if content else False,
                "winningOption": int(winning) if winning is not None else None,
                "wasSuccessful": (
                    content is not None
                    and content.is_finalized
                    and vote.vote is not None
                    and winning == vote.vote
                ),
            })
        return history
