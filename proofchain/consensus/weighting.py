from __future__ import annotations

from decimal import Decimal

DEFAULT_CONFIDENCE_SCALE = 10


def quadratic_weight(
    usd_value: Decimal,
    confidence: int,
    confidence_scale: int = DEFAULT_CONFIDENCE_SCALE,
) -> Decimal:
    """Influence of a single vote: ``sqrt(usd_value) * confidence / confidence_scale``.

    Non-positive stakes weigh nothing.
    """
    usd_value = Decimal(usd_value)
    if usd_value <= 0:
        return Decimal(0)
    return usd_value.sqrt() * Decimal(confidence) / Decimal(confidence_scale)
