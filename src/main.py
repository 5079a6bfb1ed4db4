import argparse
import asyncio
from typing import Optional, Sequence

from rich.console import Console
from rich.table import Table

from db.models import TablePayment
from db.storage import MemoryStorage, SqliteStorage, Storage
from table.store import TableStore
from utils.config import Settings
from utils.logger import get_logger
from utils.pure import format_money

_logger = get_logger("demo")

DEMO_ORDERS = {
    "Ana": [("1", 1), ("7", 2)],
    "Bruno": [("3", 1), ("8", 1)],
    "Carla": [("9", 1)],
}


def render_bill(store: TableStore, payment: TablePayment, console: Console) -> Table:
    table = Table(title=f"Table {store.get_session().table_number}")
    table.add_column("Diner")
    table.add_column("Color")
    table.add_column("Owes", justify="right")
    for share in payment.shares:
        color = store.get_diner_color(share.diner_id)
        table.add_row(share.diner_name, f"[{color}]●[/]", format_money(share.amount))
    table.add_section()
    table.add_row("Total", "", format_money(payment.total_amount))
    console.print(table)
    return table


async def run_demo(
    table_number: str = "12",
    names: Sequence[str] = tuple(DEMO_ORDERS),
    settings: Optional[Settings] = None,
    storage: Optional[Storage] = None,
    console: Optional[Console] = None,
) -> TablePayment:
    """Play one evening at a table: everyone joins, orders a round, pays."""
    console = console or Console()
    storage = storage if storage is not None else MemoryStorage()
    settings = settings or Settings()

    # each diner has their own device; the session record is shared
    devices = {}
    for name in names:
        device = TableStore(storage=storage, device_storage=MemoryStorage(), settings=settings)
        devices[name] = device.device_storage
        await device.create_or_join_session(table_number, name)
        for product_id, qty in DEMO_ORDERS.get(name, [("8", 1)]):
            await device.add_product_to_cart(product_id, qty)
        order = await device.submit_order()
        console.print(
            f"{name} sent round {order.round_number}: {format_money(order.subtotal)}"
        )
        device.teardown()

    # the last diner asks for the bill from a freshly opened app
    store = TableStore(storage=storage, device_storage=devices.get(names[-1]), settings=settings)
    await store.load()
    if store.get_session() is None:
        await store.create_or_join_session(table_number, names[-1])

    store.flow.add_listener(lambda old, new: console.print(f"[dim]{old} -> {new}[/]"))
    await store.close_table()
    await store.flow.wait_for("bill_ready")
    console.print(store.describe_close_status())

    payment = await store.confirm_payment(method="card", split_method="by_consumption")
    render_bill(store, payment, console)
    store.teardown()
    return payment


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Simulate a shared table from join to payment.")
    parser.add_argument("--table", default="12", help="table number printed on the QR")
    parser.add_argument("--fast", action="store_true", help="skip the simulated delays")
    parser.add_argument("--db", default=None, help="persist to this SQLite file")
    args = parser.parse_args(argv)

    settings = Settings.instant() if args.fast else Settings.from_env()
    storage = SqliteStorage(args.db) if args.db else MemoryStorage()
    asyncio.run(run_demo(args.table, settings=settings, storage=storage))


if __name__ == "__main__":
    main()
