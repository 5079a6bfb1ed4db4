import asyncio
import os
import sys
from datetime import datetime, timedelta, timezone

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
src_path = os.path.join(ROOT, "src")
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from db.storage import MemoryStorage  # noqa: E402
from table.errors import PersistenceError  # noqa: E402

T0 = datetime(2025, 11, 1, 20, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class ManualSleep:
    """A sleep that blocks until the test releases it, recording each delay."""

    def __init__(self):
        self.pending = []
        self.delays = []

    async def __call__(self, delay: float) -> None:
        fut = asyncio.get_running_loop().create_future()
        self.delays.append(delay)
        self.pending.append(fut)
        await fut

    def release_next(self) -> None:
        fut = self.pending.pop(0)
        if not fut.done():
            fut.set_result(None)


class RecordingSleep:
    """A sleep that returns immediately, recording each delay."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


class FailingStorage(MemoryStorage):
    """Memory storage whose writes can be switched off."""

    def __init__(self):
        super().__init__()
        self.fail_writes = False

    async def set(self, key: str, value: str) -> None:
        if self.fail_writes:
            raise PersistenceError(f"disk full while writing {key}")
        await super().set(key, value)


async def settle(rounds: int = 10) -> None:
    """Let pending callbacks and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)
