"""Deterministic position sizing utilities."""

from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal

from papertrade.domain.models import to_decimal


def position_qty(
    buying_power: Decimal | float,
    price: Decimal | float,
    fraction: Decimal | float = Decimal("0.10"),
    max_position_size: Decimal | float = Decimal("10000"),
) -> int:
    """Whole shares worth min(buying_power * fraction, max_position_size) at price."""
    unit_price = to_decimal(price)
    if unit_price <= 0:
        return 0
    position_value = min(
        to_decimal(buying_power) * to_decimal(fraction),
        to_decimal(max_position_size),
    )
    if position_value <= 0:
        return 0
    return int((position_value / unit_price).to_integral_value(rounding=ROUND_FLOOR))
