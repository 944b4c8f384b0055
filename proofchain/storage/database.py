from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
import uuid
from datetime import datetime
from decimal import Decimal

from proofchain.consensus.window import as_utc
from proofchain.models.errors import DuplicateVote
from proofchain.models.types import (
    ContentItem,
    SupportedToken,
    TokenType,
    Vote,
    VoteOption,
    empty_distribution,
    empty_token_totals,
)

logger = logging.getLogger(__name__)

SORTABLE_COLUMNS = {
    "submissionTime": "submission_time",
    "votingEndTime": "voting_end_time",
    "votingStartTime": "voting_start_time",
    "participantCount": "participant_count",
    "contentId": "content_id",
    "title": "title",
}

_END_TIME_SQL = "COALESCE(voting_end_time, voting_deadline, reveal_deadline)"

STATUS_FILTERS = ("pending", "live", "expired", "finalized", "unfinalized")


def _ts(value: datetime | None) -> str | None:
    if value is None:
        return None
    return as_utc(value).isoformat(timespec="microseconds")


def _parse_ts(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


def _dump_distribution(distribution: dict[VoteOption, Decimal]) -> str:
    return json.dumps({str(int(option)): str(weight) for option, weight in distribution.items()})


def _load_distribution(raw: str | None) -> dict[VoteOption, Decimal]:
    distribution = empty_distribution()
    if raw:
        for key, weight in json.loads(raw).items():
            distribution[VoteOption(int(key))] = Decimal(weight)
    return distribution


def _dump_token_totals(totals: dict[TokenType, Decimal] | None) -> str:
    totals = totals or {}
    return json.dumps({token.name: str(totals.get(token, Decimal(0))) for token in TokenType})


def _load_token_totals(raw: str | None) -> dict[TokenType, Decimal]:
    totals = empty_token_totals()
    if raw:
        for symbol, amount in json.loads(raw).items():
            totals[TokenType[symbol]] = Decimal(amount)
    return totals


class Database:
    def __init__(self, db_path: str = "proofchain.db") -> None:
        self._db_path = db_path
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._create_tables()

    def _create_tables(self) -> None:
        with self._lock:
            cursor = self._conn.cursor()
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS contents (
                    id TEXT PRIMARY KEY,
                    content_id INTEGER UNIQUE,
                    title TEXT NOT NULL,
                    description TEXT,
                    content_type TEXT,
                    content_url TEXT,
                    creator TEXT NOT NULL,
                    submission_time TEXT,
                    voting_start_time TEXT,
                    voting_end_time TEXT,
                    voting_deadline TEXT,
                    reveal_deadline TEXT,
                    is_finalized INTEGER NOT NULL DEFAULT 0,
                    finalized_at TEXT,
                    winning_option INTEGER,
                    consensus_json TEXT,
                    participant_count INTEGER NOT NULL DEFAULT 0,
                    participants_json TEXT NOT NULL DEFAULT '[]',
                    total_usd_value TEXT NOT NULL DEFAULT '0',
                    vote_distribution_json TEXT,
                    total_staked_by_token_json TEXT,
                    has_claimed_reward INTEGER NOT NULL DEFAULT 0,
                    claimed_reward INTEGER NOT NULL DEFAULT 0,
                    claimed_at TEXT
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS votes (
                    id TEXT PRIMARY KEY,
                    content_id TEXT NOT NULL REFERENCES contents(id),
                    voter TEXT NOT NULL,
                    vote INTEGER,
                    token_type INTEGER NOT NULL,
                    stake_amount TEXT NOT NULL,
                    confidence INTEGER,
                    timestamp TEXT,
                    commit_hash TEXT,
                    salt TEXT,
                    revealed INTEGER NOT NULL DEFAULT 1,
                    UNIQUE (content_id, voter)
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS supported_tokens (
                    token_type INTEGER PRIMARY KEY,
                    name TEXT,
                    symbol TEXT,
                    decimals INTEGER NOT NULL,
                    current_price_usd TEXT NOT NULL DEFAULT '0',
                    is_active INTEGER NOT NULL DEFAULT 1,
                    min_stake_amount TEXT NOT NULL DEFAULT '0',
                    bonus_multiplier INTEGER NOT NULL DEFAULT 1000,
                    last_price_update TEXT
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS metrics (
                    id TEXT PRIMARY KEY,
                    metric_name TEXT,
                    value INTEGER,
                    timestamp TEXT
                )
                """
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_contents_due "
                "ON contents (is_finalized, voting_end_time)"
            )
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_votes_voter ON votes (voter)")
            self._conn.commit()

    # -- contents -----------------------------------------------------------

    def save_content(self, content: ContentItem) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT INTO contents "
                "(id, content_id, title, description, content_type, content_url, creator, "
                "submission_time, voting_start_time, voting_end_time, voting_deadline, "
                "reveal_deadline, vote_distribution_json) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    content.id,
                    content.content_id,
                    content.title,
                    content.description,
                    content.content_type,
                    content.content_url,
                    content.creator.lower(),
                    _ts(content.submission_time),
                    _ts(content.voting_start_time),
                    _ts(content.voting_end_time),
                    _ts(content.voting_deadline),
                    _ts(content.reveal_deadline),
                    _dump_distribution(content.vote_distribution),
                ),
            )
            self._conn.commit()

    def _row_to_content(self, row: sqlite3.Row, votes: list[Vote]) -> ContentItem:
        winning = row["winning_option"]
        return ContentItem(
            id=row["id"],
            content_id=row["content_id"],
            title=row["title"],
            description=row["description"] or "",
            content_type=row["content_type"] or "text",
            content_url=row["content_url"] or "",
            creator=row["creator"],
            submission_time=_parse_ts(row["submission_time"]),
            voting_start_time=_parse_ts(row["voting_start_time"]),
            voting_end_time=_parse_ts(row["voting_end_time"]),
            voting_deadline=_parse_ts(row["voting_deadline"]),
            reveal_deadline=_parse_ts(row["reveal_deadline"]),
            is_finalized=bool(row["is_finalized"]),
            finalized_at=_parse_ts(row["finalized_at"]),
            winning_option=VoteOption(winning) if winning is not None else None,
            consensus=json.loads(row["consensus_json"]) if row["consensus_json"] else None,
            participant_count=row["participant_count"],
            participants=json.loads(row["participants_json"]),
            total_usd_value=Decimal(row["total_usd_value"]),
            vote_distribution=_load_distribution(row["vote_distribution_json"]),
            total_staked_by_token=_load_token_totals(row["total_staked_by_token_json"]),
            has_claimed_reward=bool(row["has_claimed_reward"]),
            claimed_reward=row["claimed_reward"],
            claimed_at=_parse_ts(row["claimed_at"]),
            votes=votes,
        )

    def _fetch_content(self, where: str, params: tuple) -> ContentItem | None:
        with self._lock:
            row = self._conn.execute(f"SELECT * FROM contents WHERE {where}", params).fetchone()
        if row is None:
            return None
        return self._row_to_content(row, self.get_votes(row["id"]))

    def get_content(self, content_id: str) -> ContentItem | None:
        return self._fetch_content("id = ?", (content_id,))

    def get_content_by_numeric_id(self, numeric_id: int) -> ContentItem | None:
        return self._fetch_content("content_id = ?", (numeric_id,))

    @staticmethod
    def _status_filter(status: str | None, now: datetime | None) -> tuple[str, tuple]:
        """WHERE clause matching VotingWindowPolicy.status for the given status value."""
        if status is None:
            return "", ()
        if status == "finalized":
            return "WHERE is_finalized = 1", ()
        if status == "unfinalized":
            return "WHERE is_finalized = 0", ()
        if status not in STATUS_FILTERS:
            raise ValueError(f"Unknown status filter: {status!r}")
        if now is None:
            raise ValueError(f"Status filter {status!r} needs the current time")

        at = _ts(now)
        ended = f"({_END_TIME_SQL} IS NOT NULL AND {_END_TIME_SQL} <= ?)"
        live = (
            f"(voting_start_time IS NOT NULL AND {_END_TIME_SQL} IS NOT NULL "
            f"AND voting_start_time <= ? AND {_END_TIME_SQL} > ?)"
        )
        if status == "expired":
            return f"WHERE is_finalized = 0 AND {ended}", (at,)
        if status == "live":
            return f"WHERE is_finalized = 0 AND {live}", (at, at)
        return f"WHERE is_finalized = 0 AND NOT {ended} AND NOT {live}", (at, at, at)

    def list_contents(
        self,
        status: str | None = None,
        sort_by: str = "submissionTime",
        sort_order: str = "desc",
        skip: int = 0,
        limit: int = 10,
        now: datetime | None = None,
    ) -> tuple[list[ContentItem], int]:
        column = SORTABLE_COLUMNS.get(sort_by, "submission_time")
        direction = "ASC" if sort_order == "asc" else "DESC"
        where, params = self._status_filter(status, now)

        with self._lock:
            total = self._conn.execute(
                f"SELECT COUNT(*) FROM contents {where}", params
            ).fetchone()[0]
            rows = self._conn.execute(
                f"SELECT * FROM contents {where} ORDER BY {column} {direction}, id "
                "LIMIT ? OFFSET ?",
                (*params, limit, skip),
            ).fetchall()
        items = [self._row_to_content(row, self.get_votes(row["id"])) for row in rows]
        return items, total

    def find_due_for_finalization(self, now: datetime) -> list[ContentItem]:
        with self._lock:
            rows = self._conn.execute(
                f"SELECT * FROM contents WHERE is_finalized = 0 "
                f"AND {_END_TIME_SQL} IS NOT NULL AND {_END_TIME_SQL} <= ? "
                f"ORDER BY {_END_TIME_SQL}",
                (_ts(now),),
            ).fetchall()
        return [self._row_to_content(row, self.get_votes(row["id"])) for row in rows]

    def finalize_content(
        self,
        content_id: str,
        *,
        winning_option: VoteOption | None,
        consensus: dict,
        vote_distribution: dict[VoteOption, Decimal],
        participants: list[str],
        total_usd_value: Decimal,
        finalized_at: datetime,
        total_staked_by_token: dict[TokenType, Decimal] | None = None,
    ) -> bool:
        """Write the verdict only if the item is still unfinalized. Returns False if another writer won."""
        with self._lock:
            cursor = self._conn.execute(
                "UPDATE contents SET is_finalized = 1, finalized_at = ?, winning_option = ?, "
                "consensus_json = ?, vote_distribution_json = ?, participants_json = ?, "
                "participant_count = ?, total_usd_value = ?, total_staked_by_token_json = ? "
                "WHERE id = ? AND is_finalized = 0",
                (
                    _ts(finalized_at),
                    int(winning_option) if winning_option is not None else None,
                    json.dumps(consensus),
                    _dump_distribution(vote_distribution),
                    json.dumps(participants),
                    len(participants),
                    str(total_usd_value),
                    _dump_token_totals(total_staked_by_token),
                    content_id,
                ),
            )
            self._conn.commit()
            return cursor.rowcount > 0

    def claim_reward(self, content_id: str, reward: int, claimed_at: datetime) -> bool:
        with self._lock:
            cursor = self._conn.execute(
                "UPDATE contents SET has_claimed_reward = 1, claimed_reward = ?, claimed_at = ? "
                "WHERE id = ? AND is_finalized = 1 AND has_claimed_reward = 0",
                (reward, _ts(claimed_at), content_id),
            )
            self._conn.commit()
            return cursor.rowcount > 0

    # -- votes --------------------------------------------------------------

    def insert_vote(self, vote: Vote) -> Vote:
        if not vote.id:
            vote.id = str(uuid.uuid4())
        try:
            with self._lock:
                self._conn.execute(
                    "INSERT INTO votes "
                    "(id, content_id, voter, vote, token_type, stake_amount, confidence, "
                    "timestamp, commit_hash, salt, revealed) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        vote.id,
                        vote.content_id,
                        vote.voter.lower(),
                        int(vote.vote) if vote.vote is not None else None,
                        int(vote.token_type),
                        vote.stake_amount,
                        vote.confidence,
                        _ts(vote.timestamp),
                        vote.commit_hash,
                        vote.salt,
                        int(vote.revealed),
                    ),
                )
                self._conn.commit()
        except sqlite3.IntegrityError as exc:
            raise DuplicateVote(
                f"{vote.voter} has already voted on content {vote.content_id}"
            ) from exc
        return vote

    @staticmethod
    def _row_to_vote(row: sqlite3.Row) -> Vote:
        return Vote(
            id=row["id"],
            content_id=row["content_id"],
            voter=row["voter"],
            vote=VoteOption(row["vote"]) if row["vote"] is not None else None,
            token_type=TokenType(row["token_type"]),
            stake_amount=row["stake_amount"],
            confidence=row["confidence"],
            timestamp=_parse_ts(row["timestamp"]),
            commit_hash=row["commit_hash"],
            salt=row["salt"],
            revealed=bool(row["revealed"]),
        )

    def get_votes(self, content_id: str) -> list[Vote]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM votes WHERE content_id = ? ORDER BY timestamp, id",
                (content_id,),
            ).fetchall()
        return [self._row_to_vote(row) for row in rows]

    def get_vote(self, content_id: str, voter: str) -> Vote | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM votes WHERE content_id = ? AND voter = ?",
                (content_id, voter.lower()),
            ).fetchone()
        return self._row_to_vote(row) if row is not None else None

    def get_votes_by_voter(self, voter: str) -> list[Vote]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM votes WHERE voter = ? ORDER BY timestamp DESC",
                (voter.lower(),),
            ).fetchall()
        return [self._row_to_vote(row) for row in rows]

    def reveal_vote(
        self, content_id: str, voter: str, vote: VoteOption, confidence: int, salt: str
    ) -> bool:
        with self._lock:
            cursor = self._conn.execute(
                "UPDATE votes SET vote = ?, confidence = ?, salt = ?, revealed = 1 "
                "WHERE content_id = ? AND voter = ? AND revealed = 0 "
                "AND content_id IN (SELECT id FROM contents WHERE is_finalized = 0)",
                (int(vote), confidence, salt, content_id, voter.lower()),
            )
            self._conn.commit()
            return cursor.rowcount > 0

    # -- supported tokens ---------------------------------------------------

    def upsert_supported_token(self, token: SupportedToken) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT INTO supported_tokens "
                "(token_type, name, symbol, decimals, current_price_usd, is_active, "
                "min_stake_amount, bonus_multiplier, last_price_update) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT (token_type) DO UPDATE SET name = excluded.name, "
                "symbol = excluded.symbol, decimals = excluded.decimals, "
                "current_price_usd = excluded.current_price_usd, "
                "is_active = excluded.is_active, min_stake_amount = excluded.min_stake_amount, "
                "bonus_multiplier = excluded.bonus_multiplier, "
                "last_price_update = excluded.last_price_update",
                (
                    int(token.token_type),
                    token.name,
                    token.symbol,
                    token.decimals,
                    str(token.current_price_usd),
                    int(token.is_active),
                    token.min_stake_amount,
                    token.bonus_multiplier,
                    _ts(token.last_price_update),
                ),
            )
            self._conn.commit()

    @staticmethod
    def _row_to_token(row: sqlite3.Row) -> SupportedToken:
        return SupportedToken(
            token_type=TokenType(row["token_type"]),
            name=row["name"],
            symbol=row["symbol"],
            decimals=row["decimals"],
            current_price_usd=Decimal(row["current_price_usd"]),
            is_active=bool(row["is_active"]),
            min_stake_amount=row["min_stake_amount"],
            bonus_multiplier=row["bonus_multiplier"],
            last_price_update=_parse_ts(row["last_price_update"]),
        )

    def get_supported_token(self, token_type: TokenType) -> SupportedToken | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM supported_tokens WHERE token_type = ?", (int(token_type),)
            ).fetchone()
        return self._row_to_token(row) if row is not None else None

    def list_supported_tokens(self, active_only: bool = False) -> list[SupportedToken]:
        query = "SELECT * FROM supported_tokens"
        if active_only:
            query += " WHERE is_active = 1"
        with self._lock:
            rows = self._conn.execute(query + " ORDER BY token_type").fetchall()
        return [self._row_to_token(row) for row in rows]

    def update_token_price(self, token_type: TokenType, price_usd: Decimal, at: datetime) -> bool:
        with self._lock:
            cursor = self._conn.execute(
                "UPDATE supported_tokens SET current_price_usd = ?, last_price_update = ? "
                "WHERE token_type = ?",
                (str(price_usd), _ts(at), int(token_type)),
            )
            self._conn.commit()
            return cursor.rowcount > 0

    # -- metrics ------------------------------------------------------------

    def log_metric(self, metric_name: str, value: int) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT INTO metrics (id, metric_name, value, timestamp) "
                "VALUES (?, ?, ?, ?)",
                (
                    str(uuid.uuid4()),
                    metric_name,
                    value,
                    time.strftime("%Y-%m-%dT%H:%M:%SZ"),
                ),
            )
            self._conn.commit()

    def metric_total(self, metric_name: str) -> int:
        with self._lock:
            row = self._conn.execute(
                "SELECT COALESCE(SUM(value), 0) FROM metrics WHERE metric_name = ?",
                (metric_name,),
            ).fetchone()
        return row[0]

    def close(self) -> None:
        with self._lock:
            try:
                self._conn.commit()
                self._conn.close()
                logger.info("Database connection closed")
            except Exception as exc:
                logger.error("Error closing database: %s", exc)
