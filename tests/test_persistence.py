import asyncio
import os
import tempfile
import unittest
from datetime import timedelta

from support import T0, FakeClock

from db import crud
from db import database as db_database
from db.models import AddToCartInput, DeviceBinding, TableSession, to_iso
from db.storage import MemoryStorage, SqliteStorage
from table.errors import ExpiredSessionError, PersistenceError
from table.store import TableStore
from utils.config import Settings


def make_session(created=T0):
    return TableSession(id="ses-1", table_number="12", status="active", created_at=to_iso(created))


class SqliteStorageTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        # Point the DB to a temporary file and force re-initialization
        self.temp_dir = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self.temp_dir.name, "nested", "test.sqlite")
        db_database.reset(self.db_path)

    def tearDown(self):
        self.temp_dir.cleanup()

    # ---------- Key/value ----------

    async def test_get_set_remove(self):
        storage = SqliteStorage()
        self.assertIsNone(await storage.get("k"))
        await storage.set("k", "one")
        await storage.set("k", "two")
        self.assertEqual(await storage.get("k"), "two")
        await storage.remove("k")
        await storage.remove("k")
        self.assertIsNone(await storage.get("k"))
        self.assertTrue(os.path.exists(self.db_path))

    async def test_schema_created_once(self):
        async with db_database.connect() as conn:
            self.assertTrue(await db_database._table_exists(conn, "kv_store"))
        self.assertTrue(db_database._initialized)

    async def test_explicit_path(self):
        other = os.path.join(self.temp_dir.name, "other.sqlite")
        storage = SqliteStorage(other)
        await storage.set("a", "1")
        self.assertEqual(await storage.get("a"), "1")
        self.assertIsNone(await SqliteStorage().get("a"))

    async def test_unusable_file_raises_persistence_error(self):
        # a directory where the database file should be
        broken = os.path.join(self.temp_dir.name, "dir.sqlite")
        os.makedirs(broken)
        storage = SqliteStorage(broken)
        with self.assertRaises(PersistenceError):
            await storage.set("a", "1")
        with self.assertRaises(PersistenceError):
            await storage.get("a")

    # ---------- Store on SQLite ----------

    async def test_store_round_trip_on_disk(self):
        settings = Settings.instant()
        clock = FakeClock()
        store = TableStore(storage=SqliteStorage(), settings=settings, clock=clock)
        await store.create_or_join_session("12", "Ana")
        await asyncio.gather(
            *(
                store.add_to_cart(AddToCartInput(product_id=str(i), name="Dish", price=2.5))
                for i in range(5)
            )
        )
        await store.submit_order()
        await store.add_to_cart(AddToCartInput(product_id="9", name="Torta", price=9.0, quantity=2))

        reopened = TableStore(storage=SqliteStorage(), settings=settings, clock=clock)
        session = await reopened.load()
        self.assertEqual(session.current_round, 1)
        self.assertEqual(session.orders[0].subtotal, 12.5)
        self.assertEqual(len(session.orders[0].items), 5)
        self.assertEqual(reopened.get_cart_total(), 18.0)
        self.assertEqual(reopened.get_current_diner().name, "Ana")


class RecordTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.storage = MemoryStorage()

    # ---------- Session record ----------

    async def test_record_expires_eight_hours_after_creation(self):
        record = crud.build_record(make_session(), ttl_hours=8)
        self.assertEqual(record.expires_at, to_iso(T0 + timedelta(hours=8)))
        self.assertFalse(record.is_expired(T0 + timedelta(hours=8)))
        self.assertTrue(record.is_expired(T0 + timedelta(hours=8, seconds=1)))

    async def test_decode_expired_record(self):
        raw = crud.encode_record(crud.build_record(make_session(), ttl_hours=8))
        self.assertEqual(crud.decode_record(raw, T0).session.id, "ses-1")
        with self.assertRaises(ExpiredSessionError):
            crud.decode_record(raw, T0 + timedelta(hours=9))

    async def test_nine_hour_old_session_is_absent(self):
        await crud.save_session(self.storage, make_session(T0 - timedelta(hours=9)), 8)
        await crud.save_binding(self.storage, DeviceBinding("ses-1", "din-1"))
        self.assertIsNone(await crud.load_session(self.storage, T0))
        self.assertEqual(self.storage.data, {})

    async def test_corrupt_record_is_discarded(self):
        await self.storage.set(crud.SESSION_KEY, "{not json")
        with self.assertLogs("db.crud", level="WARNING"):
            self.assertIsNone(await crud.load_session(self.storage, T0))
        self.assertIsNone(await self.storage.get(crud.SESSION_KEY))

        with self.assertRaises(PersistenceError):
            crud.decode_record('{"session": {}}', T0)

    async def test_clear_session_keeps_binding(self):
        await crud.save_session(self.storage, make_session(), 8)
        await crud.save_binding(self.storage, DeviceBinding("ses-1", "din-1"))
        await crud.clear_session(self.storage)
        self.assertIsNone(await crud.load_session(self.storage, T0))
        self.assertIsNotNone(await crud.load_binding(self.storage))

    async def test_binding_round_trip(self):
        self.assertIsNone(await crud.load_binding(self.storage))
        await crud.save_binding(self.storage, DeviceBinding("ses-1", "din-1"))
        self.assertEqual(await crud.load_binding(self.storage), DeviceBinding("ses-1", "din-1"))
        await crud.clear_binding(self.storage)
        self.assertIsNone(await crud.load_binding(self.storage))

        await self.storage.set(crud.BINDING_KEY, "[]")
        self.assertIsNone(await crud.load_binding(self.storage))

    async def test_session_serialisation_keeps_history(self):
        store = TableStore(storage=self.storage, settings=Settings.instant(), clock=FakeClock())
        await store.create_or_join_session("VIP-1", "Ana")
        await store.add_to_cart(AddToCartInput("1", "Tofu Frito", 12.5, notes="sin sal"))
        order = await store.submit_order()
        await store.update_order_status(order.id, "confirmed")

        loaded = await crud.load_session(self.storage, T0)
        self.assertEqual(loaded, store.get_session())
        self.assertEqual(loaded.orders[0].items[0].notes, "sin sal")
        self.assertEqual(loaded.orders[0].status, "confirmed")


if __name__ == "__main__":
    unittest.main()
