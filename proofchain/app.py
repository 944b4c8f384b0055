from __future__ import annotations

import asyncio
import logging
import signal
import sys
from dataclasses import dataclass
from datetime import timedelta
from functools import partial

from flask import Flask
from flask_cors import CORS

from proofchain.api.routes import api
from proofchain.config.logging import setup_logging
from proofchain.config.settings import Settings, load_settings
from proofchain.consensus.aggregator import ConsensusAggregator
from proofchain.consensus.finalization import FinalizationEngine
from proofchain.consensus.rewards import RewardCalculator
from proofchain.consensus.window import Clock, VotingWindowPolicy, utc_now
from proofchain.jobs.scheduler import FinalizationScheduler
from proofchain.models.errors import PriceUnavailable
from proofchain.pricing.converter import PriceConverter
from proofchain.pricing.price_source import (
    DatabasePriceSource,
    OraclePriceSource,
    PriceSource,
    StaticPriceSource,
)
from proofchain.services.tokens import refresh_token_prices, seed_supported_tokens
from proofchain.services.voting import VotingService
from proofchain.storage.database import Database

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    database: Database
    policy: VotingWindowPolicy
    converter: PriceConverter
    engine: FinalizationEngine
    rewards: RewardCalculator
    voting: VotingService
    oracle: OraclePriceSource | None = None


def build_price_source(settings: Settings, database: Database) -> tuple[PriceSource, OraclePriceSource | None]:
    if settings.test_mode:
        return StaticPriceSource(), None
    if settings.price_source == "oracle":
        oracle = OraclePriceSource(settings.price_oracle_url, api_key=settings.price_oracle_api_key)
        # Aggregation reads the stored snapshot; the oracle only feeds the refresh job.
        return DatabasePriceSource(database), oracle
    if settings.price_source == "database":
        return DatabasePriceSource(database), None
    return StaticPriceSource(), None


def build_services(
    settings: Settings,
    database: Database,
    clock: Clock = utc_now,
    price_source: PriceSource | None = None,
) -> Services:
    oracle = None
    if price_source is None:
        price_source, oracle = build_price_source(settings, database)
    seed_supported_tokens(database, clock)

    policy = VotingWindowPolicy(clock=clock, claim_delay=timedelta(hours=settings.claim_delay_hours))
    converter = PriceConverter(price_source)
    aggregator = ConsensusAggregator(
        converter,
        threshold_percent=settings.consensus_threshold_percent,
        confidence_scale=settings.confidence_scale,
    )
    engine = FinalizationEngine(database, aggregator, policy)
    rewards = RewardCalculator(database, policy)
    voting = VotingService(
        database,
        converter,
        policy,
        min_confidence=settings.min_confidence,
        max_confidence=settings.max_confidence,
        confidence_scale=settings.confidence_scale,
        default_voting_period=timedelta(hours=settings.default_voting_period_hours),
    )
    return Services(
        settings=settings,
        database=database,
        policy=policy,
        converter=converter,
        engine=engine,
        rewards=rewards,
        voting=voting,
        oracle=oracle,
    )


def create_flask_app(services: Services) -> Flask:
    app = Flask(__name__)
    CORS(app, resources={r"/api/*": {"origins": services.settings.cors_origins}})

    app.config["SETTINGS"] = services.settings
    app.config["DATABASE"] = services.database
    app.config["CONVERTER"] = services.converter
    app.config["ENGINE"] = services.engine
    app.config["REWARDS"] = services.rewards
    app.config["VOTING"] = services.voting

    app.register_blueprint(api)
    return app


def create_scheduler(services: Services) -> FinalizationScheduler:
    settings = services.settings
    price_refresh = None
    if services.oracle is not None:
        price_refresh = partial(refresh_token_prices, services.database, services.oracle)
    return FinalizationScheduler(
        services.engine,
        interval_minutes=settings.finalization_interval_minutes,
        initial_delay_seconds=settings.initial_finalization_delay_seconds,
        price_refresh=price_refresh,
        price_refresh_minutes=settings.price_refresh_interval_minutes,
    )


async def run_flask(app: Flask, host: str, port: int) -> None:
    from wsgiref.simple_server import make_server

    server = make_server(host, port, app)
    logger.info("Flask server starting on http://%s:%d", host, port)
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, server.serve_forever)


async def main() -> None:
    setup_logging()
    logger.info("Starting ProofChain consensus service...")

    settings = load_settings()
    database = Database(settings.database_path)
    services = build_services(settings, database)
    app = create_flask_app(services)
    scheduler = create_scheduler(services)

    if services.oracle is not None:
        try:
            refresh_token_prices(database, services.oracle)
        except PriceUnavailable as exc:
            logger.warning("Initial price refresh failed, using stored prices: %s", exc)

    if settings.test_mode:
        logger.info("Running in test mode: using built-in static prices")

    def _shutdown(sig: int, _frame: object) -> None:
        logger.info("Received signal %s, shutting down...", sig)
        scheduler.stop()
        database.close()
        sys.exit(0)

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    try:
        await asyncio.gather(
            run_flask(app, settings.api_host, settings.api_port),
            scheduler.run(),
        )
    except Exception as exc:
        logger.error("Main loop error: %s", exc)
        raise
    finally:
        database.close()


if __name__ == "__main__":
    asyncio.run(main())
