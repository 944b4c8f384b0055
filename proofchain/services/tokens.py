from __future__ import annotations

import logging

from proofchain.consensus.window import Clock, utc_now
from proofchain.models.types import SupportedToken, TokenType
from proofchain.pricing.price_source import DEFAULT_DECIMALS, DEFAULT_PRICES_USD, OraclePriceSource

logger = logging.getLogger(__name__)

TOKEN_NAMES: dict[TokenType, str] = {
    TokenType.BTC: "Bitcoin",
    TokenType.ETH: "Ether",
    TokenType.USDFC: "USD for Filecoin",
    TokenType.MATIC: "Polygon",
    TokenType.FIL: "Filecoin",
    TokenType.USDC: "USD Coin",
    TokenType.USDT: "Tether",
    TokenType.DOT: "Polkadot",
    TokenType.SOL: "Solana",
}


def seed_supported_tokens(database: "Database", clock: Clock = utc_now) -> int:
    """Insert the default token table for any token type that is not stored yet."""
    added = 0
    for token_type in TokenType:
        if database.get_supported_token(token_type) is not None:
            continue
        database.upsert_supported_token(
            SupportedToken(
                token_type=token_type,
                name=TOKEN_NAMES[token_type],
                symbol=token_type.name,
                decimals=DEFAULT_DECIMALS[token_type],
                current_price_usd=DEFAULT_PRICES_USD[token_type],
                is_active=True,
                min_stake_amount="0",
                last_price_update=clock(),
            )
        )
        added += 1
    if added:
        logger.info("Seeded %d supported tokens", added)
    return added


def refresh_token_prices(
    database: "Database", oracle: OraclePriceSource, clock: Clock = utc_now
) -> int:
    """Copy oracle prices into the supported_tokens table. Raises PriceUnavailable."""
    prices = oracle.fetch_prices()
    now = clock()
    updated = 0
    for token_type, price in prices.items():
        if database.update_token_price(token_type, price, now):
            updated += 1
    logger.info("Updated prices for %d tokens", updated)
    return updated
