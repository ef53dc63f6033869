"""Money helpers shared across the core.


- MONEY_PLACES controls ledger granularity (2 decimal places, local currency).
- to_money normalises str/int/float/Decimal input into a 2-place Decimal.
- AMOUNT_TOLERANCE is the slack allowed when comparing gateway-reported amounts.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

MONEY_PLACES = Decimal("0.01")
ZERO = Decimal("0.00")
AMOUNT_TOLERANCE = Decimal("0.01")


def to_money(amount) -> Decimal:
    """
    Convert a human amount (e.g., "1000", 700.5, Decimal("1.005")) to a 2-place Decimal, half-up
    """
    if isinstance(amount, float):
        # go through str so 0.1 stays 0.1 instead of its binary expansion
        amount = str(amount)
    try:
        return Decimal(amount).quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)
    except (InvalidOperation, TypeError) as e:
        raise ValueError(f"Invalid amount: {amount!r}") from e


def money_str(amount) -> str:
    """
    Format an amount for JSON payloads and descriptions
    """
    return f"{to_money(amount):.2f}"
