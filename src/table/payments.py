"""Bill splitting.

``compute_shares`` is pure: it derives shares from the diners and the order
history every time it is called and never stores them. All arithmetic is in
integer cents; the ``equal`` and ``by_consumption`` methods always sum back to
the table total exactly.
"""

from __future__ import annotations

from typing import Dict, List, Mapping, Optional, Sequence

from db.models import SPLIT_METHODS, Diner, OrderRecord, PaymentShare
from utils.pure import from_cents, split_cents, sum_cents, to_cents


def billable_orders(orders: Sequence[OrderRecord]) -> List[OrderRecord]:
    return [order for order in orders if not order.is_cancelled]


def total_consumed_cents(orders: Sequence[OrderRecord]) -> int:
    return sum_cents(order.subtotal_cents for order in billable_orders(orders))


def consumption_by_diner(orders: Sequence[OrderRecord]) -> Dict[str, int]:
    """Cents consumed per owning diner id, in first-seen order."""
    totals: Dict[str, int] = {}
    for order in billable_orders(orders):
        for item in order.items:
            totals[item.diner_id] = totals.get(item.diner_id, 0) + item.subtotal_cents
    return totals


def _equal(diners: Sequence[Diner], orders: Sequence[OrderRecord]) -> List[PaymentShare]:
    amounts = split_cents(total_consumed_cents(orders), len(diners))
    return [
        PaymentShare(diner_id=d.id, diner_name=d.name, amount=from_cents(cents))
        for d, cents in zip(diners, amounts)
    ]


def _by_consumption(
    diners: Sequence[Diner], orders: Sequence[OrderRecord]
) -> List[PaymentShare]:
    consumed = consumption_by_diner(orders)
    shares = [
        PaymentShare(diner_id=d.id, diner_name=d.name, amount=from_cents(consumed.get(d.id, 0)))
        for d in diners
    ]

    # Items owned by someone no longer in the diner list still have to be paid.
    known = {d.id for d in diners}
    names = {
        item.diner_id: item.diner_name
        for order in billable_orders(orders)
        for item in order.items
    }
    for diner_id, cents in consumed.items():
        if diner_id not in known:
            shares.append(
                PaymentShare(diner_id=diner_id, diner_name=names[diner_id], amount=from_cents(cents))
            )
    return shares


def _custom(
    diners: Sequence[Diner], custom_amounts: Optional[Mapping[str, float]]
) -> List[PaymentShare]:
    amounts = custom_amounts or {}
    return [
        PaymentShare(
            diner_id=d.id,
            diner_name=d.name,
            amount=from_cents(to_cents(amounts.get(d.id, 0))),
        )
        for d in diners
    ]


def compute_shares(
    split_method: str,
    diners: Sequence[Diner],
    orders: Sequence[OrderRecord],
    custom_amounts: Optional[Mapping[str, float]] = None,
) -> List[PaymentShare]:
    """
    Compute what each diner owes.

    Args:
        split_method: "equal", "by_consumption" or "custom".
        diners: the table's diners in join order.
        orders: the table's order history; cancelled rounds are ignored.
        custom_amounts: diner id -> amount, only read by "custom". Diners
            without an entry get a zero share for the caller to fill in.

    Returns:
        One share per diner in join order. "by_consumption" appends a share
        for every item owner missing from ``diners``. Empty when there are
        no diners.

    Raises:
        ValueError: unknown split method.
    """
    if split_method not in SPLIT_METHODS:
        raise ValueError(f"Unknown split method: {split_method!r}")
    if not diners:
        return []
    if split_method == "equal":
        return _equal(diners, orders)
    if split_method == "by_consumption":
        return _by_consumption(diners, orders)
    return _custom(diners, custom_amounts)
