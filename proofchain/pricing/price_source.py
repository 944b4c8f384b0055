from __future__ import annotations

import logging
import threading
import time
from decimal import Decimal, InvalidOperation

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from proofchain.models.errors import PriceUnavailable, UnknownTokenType
from proofchain.models.types import TokenType

logger = logging.getLogger(__name__)

DEFAULT_PRICES_USD: dict[TokenType, Decimal] = {
    TokenType.BTC: Decimal("45000"),
    TokenType.ETH: Decimal("2500"),
    TokenType.USDFC: Decimal("1"),
    TokenType.MATIC: Decimal("0.8"),
    TokenType.FIL: Decimal("5"),
    TokenType.USDC: Decimal("1"),
    TokenType.USDT: Decimal("1"),
    TokenType.DOT: Decimal("6"),
    TokenType.SOL: Decimal("100"),
}

DEFAULT_DECIMALS: dict[TokenType, int] = {
    TokenType.BTC: 8,
    TokenType.ETH: 18,
    TokenType.USDFC: 6,
    TokenType.MATIC: 18,
    TokenType.FIL: 18,
    TokenType.USDC: 6,
    TokenType.USDT: 6,
    TokenType.DOT: 10,
    TokenType.SOL: 9,
}


def parse_token_type(value: object) -> TokenType:
    """Coerce an enum member, int, numeric string or symbol into a TokenType."""
    if isinstance(value, TokenType):
        return value
    if isinstance(value, str) and value.upper() in TokenType.__members__:
        return TokenType[value.upper()]
    try:
        return TokenType(int(value))
    except (TypeError, ValueError):
        raise UnknownTokenType(value) from None


class PriceSource:
    """USD price and decimal metadata per token type."""

    def price_usd(self, token_type: TokenType) -> Decimal:
        raise NotImplementedError

    def decimals(self, token_type: TokenType) -> int:
        raise NotImplementedError


class StaticPriceSource(PriceSource):
    """Fixed price table. Used in tests and demo configuration."""

    def __init__(
        self,
        prices: dict[TokenType, Decimal] | None = None,
        decimals: dict[TokenType, int] | None = None,
    ) -> None:
        self._prices = dict(DEFAULT_PRICES_USD if prices is None else prices)
        self._decimals = dict(DEFAULT_DECIMALS if decimals is None else decimals)

    def price_usd(self, token_type: TokenType) -> Decimal:
        try:
            return Decimal(self._prices[token_type])
        except KeyError:
            raise UnknownTokenType(token_type) from None

    def decimals(self, token_type: TokenType) -> int:
        try:
            return self._decimals[token_type]
        except KeyError:
            raise UnknownTokenType(token_type) from None


class DatabasePriceSource(PriceSource):
    """Reads prices from the supported_tokens table, refreshed by the price job."""

    def __init__(self, database: "Database") -> None:
        self._database = database

    def _token(self, token_type: TokenType):
        token = self._database.get_supported_token(token_type)
        if token is None:
            raise UnknownTokenType(token_type)
        return token

    def price_usd(self, token_type: TokenType) -> Decimal:
        return self._token(token_type).current_price_usd

    def decimals(self, token_type: TokenType) -> int:
        return self._token(token_type).decimals


class OraclePriceSource(PriceSource):
    """Fetches USD prices from an HTTP price oracle.

    The endpoint is expected to answer ``GET <url>?symbols=BTC,ETH,...`` with
    ``{"prices": {"BTC": "45000.12", ...}}``. A snapshot of all prices is kept
    for ``ttl_seconds``; a stale snapshot is fine for aggregation.
    """

    def __init__(
        self,
        url: str,
        api_key: str | None = None,
        ttl_seconds: float = 60.0,
        session: requests.Session | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._url = url
        self._api_key = api_key
        self._ttl = ttl_seconds
        self._session = session or requests.Session()
        self._timeout = timeout
        self._lock = threading.Lock()
        self._snapshot: dict[TokenType, Decimal] = {}
        self._fetched_at: float | None = None

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type(requests.RequestException),
        reraise=True,
    )
    def _request_prices(self) -> dict:
        headers = {"X-API-Key": self._api_key} if self._api_key else {}
        response = self._session.get(
            self._url,
            params={"symbols": ",".join(t.name for t in TokenType)},
            headers=headers,
            timeout=self._timeout,
        )
        response.raise_for_status()
        return response.json()

    def fetch_prices(self) -> dict[TokenType, Decimal]:
        try:
            payload = self._request_prices()
        except (requests.RequestException, ValueError) as exc:
            logger.error("Price oracle request failed: %s", exc)
            raise PriceUnavailable(f"Price oracle unavailable: {exc}") from exc

        prices: dict[TokenType, Decimal] = {}
        for symbol, raw in (payload.get("prices") or {}).items():
            if symbol.upper() not in TokenType.__members__:
                logger.debug("Ignoring oracle price for unsupported symbol %s", symbol)
                continue
            try:
                prices[TokenType[symbol.upper()]] = Decimal(str(raw))
            except InvalidOperation:
                logger.warning("Oracle returned malformed price for %s: %r", symbol, raw)

        with self._lock:
            self._snapshot = prices
            self._fetched_at = time.monotonic()
        logger.info("Fetched %d token prices from oracle", len(prices))
        return dict(prices)

    def price_usd(self, token_type: TokenType) -> Decimal:
        with self._lock:
            fresh = (
                self._fetched_at is not None
                and time.monotonic() - self._fetched_at < self._ttl
            )
            snapshot = self._snapshot
        if not fresh:
            snapshot = self.fetch_prices()
        if token_type not in snapshot:
            raise PriceUnavailable(f"Oracle has no price for {token_type.name}")
        return snapshot[token_type]

    def decimals(self, token_type: TokenType) -> int:
        try:
            return DEFAULT_DECIMALS[token_type]
        except KeyError:
            raise UnknownTokenType(token_type) from None
