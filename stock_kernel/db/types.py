"""
Module: stock_kernel.db.types
Responsibility: Fixed-point precision constants and the central rounding
    policy for quantities, rates and amounts.  Every model, engine and
    service uses these definitions so that thousands of FIFO lot splits do
    not drift.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, selectors/ and stock_engines.  MUST NOT import from any of
    those layers.

Invariants enforced:
    - No floats anywhere in the ledger.  All quantities, rates and amounts
      are Decimal.
    - round_quantity(), round_amount() and round_rate() are the ONLY
      sanctioned rounding functions.  Mode is ROUND_HALF_UP everywhere.

Failure modes:
    - decimal.InvalidOperation from to_decimal() on non-numeric input.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any

# Quantities (kg, pieces) and amounts (INR) carry 3 fractional digits.
QUANTITY_DECIMAL_PLACES = 3
AMOUNT_DECIMAL_PLACES = 3
# Rates are informational (amount is the stored truth) and carry 4 digits.
RATE_DECIMAL_PLACES = 4
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")


def _exponent(places: int) -> Decimal:
    return Decimal(1).scaleb(-places)


def to_decimal(value: Any) -> Decimal:
    """
    Coerce int/str/Decimal to Decimal.

    Floats go through ``str()`` so that ``0.1`` becomes ``Decimal("0.1")``
    rather than its binary expansion.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def round_quantity(value: Any, rounding: str = DEFAULT_ROUNDING) -> Decimal:
    """Round a quantity to QUANTITY_DECIMAL_PLACES."""
    return to_decimal(value).quantize(_exponent(QUANTITY_DECIMAL_PLACES), rounding=rounding)


def round_amount(value: Any, rounding: str = DEFAULT_ROUNDING) -> Decimal:
    """Round a monetary amount to AMOUNT_DECIMAL_PLACES."""
    return to_decimal(value).quantize(_exponent(AMOUNT_DECIMAL_PLACES), rounding=rounding)


def round_rate(value: Any, rounding: str = DEFAULT_ROUNDING) -> Decimal:
    """Round a unit rate to RATE_DECIMAL_PLACES."""
    return to_decimal(value).quantize(_exponent(RATE_DECIMAL_PLACES), rounding=rounding)


def safe_rate(amount: Decimal, quantity: Decimal) -> Decimal:
    """
    ``amount / quantity`` rounded as a rate, or zero when quantity is zero.

    Rates are never summed; every displayed rate is recomputed through here.
    """
    if quantity == ZERO:
        return round_rate(ZERO)
    return round_rate(amount / quantity)
