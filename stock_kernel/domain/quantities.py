"""
Quantity and cost arithmetic -- pure functions, no I/O.

All values are Decimal.  Stored precision is Numeric(38, 9), so derived
costs are quantized to nine places before they reach the database.
"""

from decimal import ROUND_HALF_UP, Decimal

ZERO = Decimal("0")
HUNDRED = Decimal("100")
STORED_PLACES = Decimal("0.000000001")


def to_decimal(value) -> Decimal:
    """Coerce int / str / Decimal input to Decimal (floats via str)."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def quantize_stored(value: Decimal) -> Decimal:
    return value.quantize(STORED_PLACES, rounding=ROUND_HALF_UP)


def weighted_average_cost(
    on_hand: Decimal,
    current_cost: Decimal,
    received: Decimal,
    unit_cost: Decimal,
) -> Decimal:
    """
    Moving weighted-average cost after receiving ``received`` units.

    (on_hand * current_cost + received * unit_cost) / (on_hand + received).
    When nothing was on hand (or stock had been clamped below zero), the
    receipt cost becomes the average.
    """
    if received <= ZERO:
        return current_cost
    if on_hand <= ZERO:
        return quantize_stored(unit_cost)
    total_value = on_hand * current_cost + received * unit_cost
    return quantize_stored(total_value / (on_hand + received))


def with_wastage(quantity_per_unit: Decimal, wastage_percent: Decimal) -> Decimal:
    """Quantity consumed per parent unit including the wastage allowance."""
    return quantity_per_unit * (1 + wastage_percent / HUNDRED)


def extended_cost(quantity: Decimal, unit_cost: Decimal | None) -> Decimal | None:
    if unit_cost is None:
        return None
    return quantize_stored(quantity * unit_cost)
