import unittest

import support  # noqa: F401

from db.models import CartItem, Diner, OrderRecord
from table.payments import compute_shares, consumption_by_diner, total_consumed_cents
from utils.pure import to_cents


def diner(diner_id, name=None):
    return Diner(id=diner_id, name=name or diner_id.title(), avatar_color="#000", joined_at="t")


def item(diner_id, price, qty=1, name="Dish"):
    return CartItem(
        id=f"i-{diner_id}-{price}-{qty}",
        product_id="p",
        name=name,
        price=price,
        image="",
        quantity=qty,
        diner_id=diner_id,
        diner_name=diner_id.title(),
    )


def order(round_number, items, status="submitted"):
    items = tuple(items)
    return OrderRecord(
        id=f"o{round_number}",
        round_number=round_number,
        items=items,
        subtotal=sum(i.subtotal for i in items),
        status=status,
        submitted_by=items[0].diner_id if items else "",
        submitted_by_name="",
        submitted_at="t",
    )


def cents_of(shares):
    return sum(to_cents(s.amount) for s in shares)


class ComputeSharesTestCase(unittest.TestCase):
    def setUp(self):
        self.diners = [diner("ana"), diner("bruno"), diner("carla")]

    # ---------- equal ----------

    def test_equal_hands_remainder_to_first_diners(self):
        orders = [order(1, [item("ana", 10.00)])]
        shares = compute_shares("equal", self.diners, orders)
        self.assertEqual([s.amount for s in shares], [3.34, 3.33, 3.33])
        self.assertEqual([s.diner_id for s in shares], ["ana", "bruno", "carla"])
        self.assertEqual(cents_of(shares), 1000)

    def test_equal_sums_to_total_for_many_table_sizes(self):
        orders = [
            order(1, [item("ana", 12.50), item("bruno", 7.00, 3)]),
            order(2, [item("carla", 9.99, 2), item("ana", 0.01)]),
        ]
        total = total_consumed_cents(orders)
        for count in range(1, 13):
            diners = [diner(f"d{i}") for i in range(count)]
            shares = compute_shares("equal", diners, orders)
            self.assertEqual(len(shares), count)
            self.assertEqual(cents_of(shares), total, f"{count} diners")
            amounts = [to_cents(s.amount) for s in shares]
            self.assertLessEqual(max(amounts) - min(amounts), 1)

    def test_equal_is_deterministic(self):
        orders = [order(1, [item("ana", 100.00)])]
        first = compute_shares("equal", self.diners, orders)
        second = compute_shares("equal", self.diners, orders)
        self.assertEqual(first, second)

    def test_equal_with_no_orders_is_all_zero(self):
        shares = compute_shares("equal", self.diners, [])
        self.assertEqual([s.amount for s in shares], [0.0, 0.0, 0.0])

    # ---------- by consumption ----------

    def test_by_consumption_example_table(self):
        orders = [order(1, [item("ana", 10.00, 2), item("ana", 5.50)])]
        shares = compute_shares("by_consumption", [diner("ana"), diner("bruno")], orders)
        self.assertEqual([(s.diner_id, s.amount) for s in shares], [("ana", 25.5), ("bruno", 0.0)])

    def test_by_consumption_across_rounds(self):
        orders = [
            order(1, [item("ana", 12.50), item("bruno", 7.00, 2)]),
            order(2, [item("bruno", 5.00), item("carla", 9.00)]),
        ]
        shares = compute_shares("by_consumption", self.diners, orders)
        self.assertEqual([s.amount for s in shares], [12.5, 19.0, 9.0])
        self.assertEqual(cents_of(shares), total_consumed_cents(orders))
        self.assertEqual(consumption_by_diner(orders), {"ana": 1250, "bruno": 1900, "carla": 900})

    def test_by_consumption_keeps_departed_diners(self):
        orders = [order(1, [item("ana", 4.00), item("ghost", 6.00)])]
        shares = compute_shares("by_consumption", [diner("ana")], orders)
        self.assertEqual([(s.diner_id, s.amount) for s in shares], [("ana", 4.0), ("ghost", 6.0)])
        self.assertEqual(shares[1].diner_name, "Ghost")
        self.assertEqual(cents_of(shares), 1000)

    def test_cancelled_rounds_are_not_billed(self):
        orders = [
            order(1, [item("ana", 10.00)]),
            order(2, [item("bruno", 50.00)], status="cancelled"),
        ]
        self.assertEqual(total_consumed_cents(orders), 1000)
        shares = compute_shares("by_consumption", self.diners, orders)
        self.assertEqual([s.amount for s in shares], [10.0, 0.0, 0.0])
        self.assertEqual(cents_of(compute_shares("equal", self.diners, orders)), 1000)

    # ---------- custom & edge cases ----------

    def test_custom_is_override_ready(self):
        orders = [order(1, [item("ana", 10.00)])]
        blank = compute_shares("custom", self.diners, orders)
        self.assertEqual([s.amount for s in blank], [0.0, 0.0, 0.0])
        self.assertFalse(any(s.paid for s in blank))

        filled = compute_shares("custom", self.diners, orders, {"bruno": 7.254, "carla": 2.75})
        self.assertEqual([s.amount for s in filled], [0.0, 7.25, 2.75])

    def test_no_diners_means_no_shares(self):
        self.assertEqual(compute_shares("equal", [], [order(1, [item("ana", 1.0)])]), [])

    def test_unknown_method(self):
        with self.assertRaises(ValueError):
            compute_shares("by_weight", self.diners, [])


if __name__ == "__main__":
    unittest.main()
