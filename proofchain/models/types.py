from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum, IntEnum


class TokenType(IntEnum):
    """Stake assets, numbered as in the voting contract."""

    BTC = 0
    ETH = 1
    USDFC = 2
    MATIC = 3
    FIL = 4
    USDC = 5
    USDT = 6
    DOT = 7
    SOL = 8


class VoteOption(IntEnum):
    FAKE = 0
    REAL = 1
    ABSTAIN = 2


class Verdict(str, Enum):
    REAL = "REAL"
    FAKE = "FAKE"
    TIE = "TIE"
    ABSTAIN = "ABSTAIN"
    NO_VOTES = "NO_VOTES"


class ContentStatus(str, Enum):
    PENDING = "pending"
    LIVE = "live"
    EXPIRED = "expired"
    FINALIZED = "finalized"


def empty_distribution() -> dict[VoteOption, Decimal]:
    return {option: Decimal(0) for option in VoteOption}


def empty_token_totals() -> dict[TokenType, Decimal]:
    return {token: Decimal(0) for token in TokenType}


@dataclass
class Vote:
    """One participant's stake-weighted opinion on a content item.

    ``vote`` and ``confidence`` stay ``None`` for a commit that has not been
    revealed yet; such votes are ignored by aggregation.
    """

    content_id: str
    voter: str
    token_type: TokenType
    stake_amount: str
    vote: VoteOption | None = None
    confidence: int | None = None
    timestamp: datetime | None = None
    commit_hash: str | None = None
    salt: str | None = None
    revealed: bool = True
    id: str = ""

    def __post_init__(self) -> None:
        self.voter = self.voter.lower()


@dataclass
class OptionTally:
    count: int = 0
    weight: Decimal = Decimal(0)
    confidence_sum: Decimal = Decimal(0)

    @property
    def average_confidence(self) -> Decimal:
        if self.weight == 0:
            return Decimal(0)
        return self.confidence_sum / self.weight


@dataclass
class ConsensusResult:
    """Outcome of aggregating a set of votes. Embedded into the content item at finalization."""

    verdict: Verdict | None
    confidence: float
    total_weight: Decimal
    total_usd_value: Decimal
    tallies: dict[VoteOption, OptionTally]
    consensus_reached: bool
    threshold_percent: float = 0.0
    staked_by_token: dict[TokenType, Decimal] = field(default_factory=empty_token_totals)

    @property
    def winning_option(self) -> VoteOption | None:
        return {
            Verdict.REAL: VoteOption.REAL,
            Verdict.FAKE: VoteOption.FAKE,
            Verdict.ABSTAIN: VoteOption.ABSTAIN,
        }.get(self.verdict)

    @property
    def vote_distribution(self) -> dict[VoteOption, Decimal]:
        return {option: tally.weight for option, tally in self.tallies.items()}


@dataclass
class ContentItem:
    """A piece of submitted content under vote."""

    id: str
    title: str
    creator: str
    voting_start_time: datetime | None
    voting_end_time: datetime | None
    submission_time: datetime | None = None
    content_id: int | None = None
    description: str = ""
    content_type: str = "text"
    content_url: str = ""
    voting_deadline: datetime | None = None
    reveal_deadline: datetime | None = None
    is_finalized: bool = False
    finalized_at: datetime | None = None
    winning_option: VoteOption | None = None
    consensus: dict | None = None
    participant_count: int = 0
    participants: list[str] = field(default_factory=list)
    total_usd_value: Decimal = Decimal(0)
    vote_distribution: dict[VoteOption, Decimal] = field(default_factory=empty_distribution)
    total_staked_by_token: dict[TokenType, Decimal] = field(default_factory=empty_token_totals)
    has_claimed_reward: bool = False
    claimed_reward: int = 0
    claimed_at: datetime | None = None
    votes: list[Vote] = field(default_factory=list)

    @property
    def revealed_votes(self) -> list[Vote]:
        return [v for v in self.votes if v.revealed and v.vote is not None]


@dataclass
class SupportedToken:
    token_type: TokenType
    name: str
    symbol: str
    decimals: int
    current_price_usd: Decimal
    is_active: bool = True
    min_stake_amount: str = "0"
    bonus_multiplier: int = 1000
    last_price_update: datetime | None = None


@dataclass
class FinalizationOutcome:
    content_id: str
    result: ConsensusResult
    participants: list[str]
    finalized_at: datetime

    @property
    def winning_option(self) -> VoteOption | None:
        return self.result.winning_option

    @property
    def participant_count(self) -> int:
        return len(self.participants)


@dataclass
class ClaimResult:
    content_id: str
    reward: int
    claimed_at: datetime
