from __future__ import annotations

import os
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from proofchain.app import build_services, create_flask_app
from proofchain.config.settings import Settings
from proofchain.models.types import ContentItem, TokenType, Vote, VoteOption
from proofchain.pricing.converter import PriceConverter
from proofchain.pricing.price_source import StaticPriceSource
from proofchain.storage.database import Database
from proofchain.storage.ids import numeric_id_for

START = datetime(2025, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """A settable clock; call it to read the time."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def usdfc_converter() -> PriceConverter:
    """USDFC is priced at exactly $1, so stake amounts read as USD values."""
    return PriceConverter(StaticPriceSource())


@pytest.fixture
def temp_database(tmp_path):
    """A Database backed by a temporary SQLite file, cleaned up after the test."""
    db_file = str(tmp_path / "test_proofchain.db")
    db = Database(db_path=db_file)
    yield db
    db.close()
    if os.path.exists(db_file):
        os.remove(db_file)


@pytest.fixture
def settings() -> Settings:
    return Settings(test_mode=True, cors_origins=["http://localhost:3000"])


@pytest.fixture
def services(settings, temp_database, clock):
    return build_services(settings, temp_database, clock=clock, price_source=StaticPriceSource())


@pytest.fixture
def client(services):
    app = create_flask_app(services)
    app.config["TESTING"] = True
    return app.test_client()


@pytest.fixture
def make_content(temp_database, clock):
    """Store a content item whose voting window is given relative to the fake clock."""

    def _make(
        starts_in: timedelta = timedelta(hours=-1),
        ends_in: timedelta = timedelta(hours=23),
        title: str = "Is this photo of the summit authentic?",
    ) -> ContentItem:
        storage_id = uuid.uuid4().hex
        content = ContentItem(
            id=storage_id,
            content_id=numeric_id_for(storage_id),
            title=title,
            creator="0xCreatorAddress000000000000000000000000001",
            submission_time=clock() + starts_in,
            voting_start_time=clock() + starts_in,
            voting_end_time=clock() + ends_in,
        )
        temp_database.save_content(content)
        return temp_database.get_content(storage_id)

    return _make


@pytest.fixture
def add_vote(temp_database, clock):
    """Insert a revealed vote staked in USDFC ($1 per token)."""

    def _add(
        content: ContentItem,
        voter: str,
        vote: VoteOption,
        stake_usd: str,
        confidence: int = 10,
    ) -> Vote:
        return temp_database.insert_vote(
            Vote(
                content_id=content.id,
                voter=voter,
                vote=vote,
                token_type=TokenType.USDFC,
                stake_amount=stake_usd,
                confidence=confidence,
                timestamp=clock(),
            )
        )

    return _add
