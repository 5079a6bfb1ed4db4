"""Side-effect free money helpers.

Amounts are stored as floats (as entered by the catalogue) but every sum and
split is done in integer cents so totals never drift.
"""

import math
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, List

# Largest unit price accepted for a cart line.
MAX_PRICE = 1_000_000


def is_valid_price(value) -> bool:
    """True for a finite number worth at least one cent and at most
    ``MAX_PRICE`` (bools are rejected)."""
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        return False
    try:
        as_float = float(value)
    except (TypeError, ValueError, OverflowError):
        return False
    if not math.isfinite(as_float) or not 0 < as_float <= MAX_PRICE:
        return False
    return to_cents(value) > 0


def to_cents(amount) -> int:
    """Round an amount to whole cents, half away from zero."""
    return int(
        Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP) * 100
    )


def from_cents(cents: int) -> float:
    return cents / 100


def line_cents(price, quantity: int) -> int:
    """Cents owed for ``quantity`` units at ``price``."""
    return to_cents(price) * quantity


def sum_cents(values: Iterable[int]) -> int:
    return sum(values, 0)


def split_cents(total_cents: int, parts: int) -> List[int]:
    """
    Split ``total_cents`` into ``parts`` integer shares.

    The remainder is handed out one cent at a time to the first shares, so
    the result is deterministic and always sums back to the total.

    Raises:
        ValueError: if ``parts`` is not positive.
    """
    if parts <= 0:
        raise ValueError("parts must be positive.")
    base, remainder = divmod(total_cents, parts)
    return [base + 1 if i < remainder else base for i in range(parts)]


def format_money(amount, currency: str = "$") -> str:
    return f"{currency}{from_cents(to_cents(amount)):.2f}"
