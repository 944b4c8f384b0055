from __future__ import annotations

from decimal import Decimal, InvalidOperation

from proofchain.models.errors import InvalidStakeAmount
from proofchain.pricing.price_source import PriceSource, parse_token_type


def parse_amount(amount: object) -> Decimal:
    """Parse a stake amount given as a decimal string (or int). Floats are refused."""
    if isinstance(amount, float) or isinstance(amount, bool):
        raise InvalidStakeAmount("Stake amount must be a decimal string, not a float")
    try:
        value = Decimal(str(amount).strip())
    except InvalidOperation:
        raise InvalidStakeAmount(f"Malformed stake amount: {amount!r}") from None
    if not value.is_finite():
        raise InvalidStakeAmount(f"Malformed stake amount: {amount!r}")
    if value < 0:
        raise InvalidStakeAmount("Stake amount must not be negative")
    return value


class PriceConverter:
    def __init__(self, price_source: PriceSource) -> None:
        self._price_source = price_source

    @property
    def price_source(self) -> PriceSource:
        return self._price_source

    def usd_value(self, token_type: object, amount: object) -> Decimal:
        """USD value of *amount* whole tokens of *token_type*."""
        token = parse_token_type(token_type)
        price = self._price_source.price_usd(token)
        return parse_amount(amount) * price

    def check_precision(self, token_type: object, amount: object) -> Decimal:
        """Reject amounts with more fractional digits than the token supports."""
        token = parse_token_type(token_type)
        value = parse_amount(amount)
        decimals = self._price_source.decimals(token)
        exponent = value.normalize().as_tuple().exponent
        if isinstance(exponent, int) and -exponent > decimals:
            raise InvalidStakeAmount(
                f"{token.name} supports at most {decimals} decimal places"
            )
        return value
