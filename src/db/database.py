# manages connection to db, provides helper methods internal to db package
import asyncio
import os
from contextlib import asynccontextmanager
from sqlite3 import Row

import aiosqlite

from utils.config import DB_PATH as DEFAULT_DB_PATH
from utils.logger import get_logger

_logger = get_logger(__name__)

DB_PATH = DEFAULT_DB_PATH
DB_INIT_SCRIPTS = [
    os.path.join(os.path.dirname(__file__), "kv-tables.sql"),
]

_initialized = False
_init_lock = None
_init_lock_loop = None


def _get_init_lock() -> asyncio.Lock:
    # one lock per event loop; test runners start a fresh loop per case
    global _init_lock, _init_lock_loop
    loop = asyncio.get_running_loop()
    if _init_lock is None or _init_lock_loop is not loop:
        _init_lock = asyncio.Lock()
        _init_lock_loop = loop
    return _init_lock


async def _init_db(conn: aiosqlite.Connection) -> None:
    for script in DB_INIT_SCRIPTS:
        if not os.path.exists(script) or os.path.getsize(script) == 0:
            continue
        _logger.info(f"Initializing database with script {os.path.basename(script)}...")
        with open(script, "r") as f:
            await conn.executescript(f.read())
    await conn.commit()


async def _table_exists(conn: aiosqlite.Connection, table_name: str) -> bool:
    cur = await conn.execute(
        """
        SELECT name
        FROM sqlite_master
        WHERE type = 'table'
          AND name = ?;
        """,
        (table_name,),
    )
    row = await cur.fetchone()
    await cur.close()
    return row is not None


def reset(db_path: str = None) -> None:
    """Point the module at another database file and force re-initialization."""
    global DB_PATH, _initialized
    if db_path is not None:
        DB_PATH = db_path
    _initialized = False


@asynccontextmanager
async def connect(db_path: str = None) -> aiosqlite.Connection:
    """Async context manager yielding an aiosqlite connection.

    Creates the parent directory and the key/value table on first use.
    """
    global _initialized
    path = db_path or DB_PATH
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)

    conn = await aiosqlite.connect(path)
    conn.row_factory = Row

    try:
        if not _initialized or db_path is not None:
            async with _get_init_lock():
                if not await _table_exists(conn, "kv_store"):
                    _logger.info("Initializing database...")
                    await _init_db(conn)
                if db_path is None:
                    _initialized = True
        yield conn
    finally:
        await conn.close()
