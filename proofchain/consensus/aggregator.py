from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from proofchain.consensus.weighting import DEFAULT_CONFIDENCE_SCALE, quadratic_weight
from proofchain.models.types import (
    ConsensusResult,
    OptionTally,
    TokenType,
    Verdict,
    Vote,
    VoteOption,
    empty_token_totals,
)
from proofchain.pricing.converter import PriceConverter, parse_amount

logger = logging.getLogger(__name__)

TIE_CONFIDENCE = 50.0

_TWO_PLACES = Decimal("0.01")

# Relative tolerance for weight comparisons. Square roots are rounded to the
# decimal context precision, so mathematically equal weights can differ in the
# last digit.
WEIGHT_TOLERANCE = Decimal("1e-20")

_VERDICT_FOR_OPTION = {
    VoteOption.REAL: Verdict.REAL,
    VoteOption.FAKE: Verdict.FAKE,
    VoteOption.ABSTAIN: Verdict.ABSTAIN,
}


def round2(value: Decimal) -> float:
    return float(Decimal(value).quantize(_TWO_PLACES, rounding=ROUND_HALF_UP))


def same_weight(a: Decimal, b: Decimal) -> bool:
    return abs(a - b) <= max(abs(a), abs(b)) * WEIGHT_TOLERANCE


def percentage(part: Decimal, total: Decimal) -> float:
    if total <= 0:
        return 0.0
    return round2(part / total * 100)


class ConsensusAggregator:
    """Folds revealed votes into per-option quadratic weights and picks a verdict.

    ``threshold_percent`` of 0 means plain plurality. Above 0 the winning
    option also needs at least that share of the total weight, otherwise the
    verdict is ``None`` and ``consensus_reached`` is False.
    """

    def __init__(
        self,
        converter: PriceConverter,
        threshold_percent: float = 0,
        confidence_scale: int = DEFAULT_CONFIDENCE_SCALE,
    ) -> None:
        self._converter = converter
        self._threshold = Decimal(str(threshold_percent))
        self._confidence_scale = confidence_scale

    def aggregate(self, votes: Iterable[Vote]) -> ConsensusResult:
        tallies = {option: OptionTally() for option in VoteOption}
        total_usd = Decimal(0)
        staked = empty_token_totals()
        seen = 0

        for vote in votes:
            # Committed stake is locked whether or not the vote is revealed.
            staked[TokenType(vote.token_type)] += parse_amount(vote.stake_amount)
            if not vote.revealed or vote.vote is None:
                continue
            seen += 1
            # Price failures propagate: a vote must never silently count as zero.
            usd_value = self._converter.usd_value(vote.token_type, vote.stake_amount)
            confidence = vote.confidence or 0
            weight = quadratic_weight(usd_value, confidence, self._confidence_scale)

            tally = tallies[VoteOption(vote.vote)]
            tally.count += 1
            tally.weight += weight
            tally.confidence_sum += weight * confidence
            total_usd += usd_value

        total_weight = sum((t.weight for t in tallies.values()), Decimal(0))

        if seen == 0:
            return ConsensusResult(
                verdict=Verdict.NO_VOTES,
                confidence=0.0,
                total_weight=Decimal(0),
                total_usd_value=Decimal(0),
                tallies=tallies,
                consensus_reached=False,
                threshold_percent=float(self._threshold),
                staked_by_token=staked,
            )

        verdict, winner = self._pick_winner(tallies, total_weight)
        consensus_reached = verdict is not None

        if winner is not None and self._threshold > 0:
            share = tallies[winner].weight / total_weight * 100
            if share < self._threshold and not same_weight(share, self._threshold):
                logger.debug(
                    "Winning share %.2f%% below threshold %s%%", share, self._threshold
                )
                verdict, winner, consensus_reached = None, None, False

        if verdict is Verdict.TIE:
            confidence = TIE_CONFIDENCE
        elif winner is not None:
            confidence = round2(tallies[winner].average_confidence)
        else:
            confidence = 0.0

        return ConsensusResult(
            verdict=verdict,
            confidence=confidence,
            total_weight=total_weight,
            total_usd_value=total_usd,
            tallies=tallies,
            consensus_reached=consensus_reached,
            threshold_percent=float(self._threshold),
            staked_by_token=staked,
        )

    @staticmethod
    def _pick_winner(
        tallies: dict[VoteOption, OptionTally], total_weight: Decimal
    ) -> tuple[Verdict | None, VoteOption | None]:
        if total_weight <= 0:
            return None, None

        top = max(t.weight for t in tallies.values())
        leaders = {option for option, t in tallies.items() if same_weight(t.weight, top)}

        if VoteOption.REAL in leaders and VoteOption.FAKE in leaders:
            return Verdict.TIE, None
        # Abstain only wins outright; sharing the lead hands it to the other option.
        if len(leaders) > 1:
            leaders.discard(VoteOption.ABSTAIN)
        winner = leaders.pop()
        return _VERDICT_FOR_OPTION[winner], winner


def _tally_dict(tally: OptionTally, total_weight: Decimal) -> dict:
    return {
        "count": tally.count,
        "weight": round2(tally.weight),
        "percentage": percentage(tally.weight, total_weight),
        "averageConfidence": round2(tally.average_confidence),
    }


def serialize_consensus(result: ConsensusResult) -> dict:
    """Presentation form of a result, as persisted at finalization and served by the results API."""
    total = result.total_weight
    return {
        "verdict": result.verdict.value if result.verdict is not None else None,
        "confidence": result.confidence,
        "totalWeight": round2(total),
        "totalUSDValue": round2(result.total_usd_value),
        "consensusReached": result.consensus_reached,
        "thresholdPercent": result.threshold_percent,
        "breakdown": {
            "upvotes": _tally_dict(result.tallies[VoteOption.REAL], total),
            "downvotes": _tally_dict(result.tallies[VoteOption.FAKE], total),
            "abstains": _tally_dict(result.tallies[VoteOption.ABSTAIN], total),
        },
    }
