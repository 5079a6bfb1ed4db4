"""
Close-table negotiation.

The flow is split in two parts:

* ``transition`` is a pure lookup from (state, event) to the next state.
* ``CloseTableFlow`` schedules the timed events on the running event loop and
  only ever applies a transition that ``transition`` allows from the state the
  flow is in *at that moment*. A wake-up that arrives after the flow moved on
  (or after ``teardown``) is therefore a no-op.

    idle -> requesting -> waiting -> waiter_coming -> bill_ready -> paid

``paid`` is terminal. Leaving the table is handled by the store, which drops
the flow and starts a fresh one for the next session.
"""

from __future__ import annotations

import asyncio
import random
from typing import Awaitable, Callable, Dict, List, Literal, Optional, Tuple

from db.models import CloseFlowSnapshot
from table.errors import CloseFlowInProgress
from utils.config import Settings
from utils.logger import get_logger

_logger = get_logger(__name__)

CloseStatus = Literal["idle", "requesting", "waiting", "waiter_coming", "bill_ready", "paid"]
CloseEvent = Literal["request", "submitted", "failed", "accepted", "delivered", "pay"]

CLOSE_STATUSES: Tuple[str, ...] = (
    "idle",
    "requesting",
    "waiting",
    "waiter_coming",
    "bill_ready",
    "paid",
)

TRANSITIONS: Dict[Tuple[str, str], str] = {
    ("idle", "request"): "requesting",
    ("requesting", "submitted"): "waiting",
    ("requesting", "failed"): "idle",
    ("waiting", "accepted"): "waiter_coming",
    ("waiter_coming", "delivered"): "bill_ready",
    ("bill_ready", "pay"): "paid",
}

Listener = Callable[[str, str], None]
Sleep = Callable[[float], Awaitable[None]]


def transition(state: str, event: str) -> Optional[str]:
    """Next state for ``event`` in ``state``, or None if the event does not apply."""
    return TRANSITIONS.get((state, event))


class CloseTableFlow:
    """Drives one close-table negotiation for one session."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        sleep: Optional[Sleep] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.settings = settings or Settings()
        self._sleep = sleep or asyncio.sleep
        self._rng = rng or random.Random()

        self.status: str = "idle"
        self.waiter_name: str = ""
        self.estimated_minutes: int = 0
        self.error: Optional[str] = None
        self.history: List[str] = ["idle"]

        self._alive = True
        self._task: Optional[asyncio.Task] = None
        self._listeners: List[Listener] = []
        self._waiters: Dict[str, List[asyncio.Future]] = {}

    # ---------------------------
    # Read side
    # ---------------------------

    @property
    def alive(self) -> bool:
        return self._alive

    @property
    def is_processing(self) -> bool:
        return self.status not in ("idle", "paid")

    def snapshot(self) -> CloseFlowSnapshot:
        return CloseFlowSnapshot(
            status=self.status,
            waiter_name=self.waiter_name,
            estimated_minutes=self.estimated_minutes,
            error=self.error,
            history=tuple(self.history),
        )

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener(old, new)`` after every applied transition.

        Returns a function that unregisters the listener.
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    async def wait_for(self, status: str, timeout: Optional[float] = None) -> None:
        """Wait until the flow has been in ``status``.

        Raises:
            asyncio.CancelledError: the flow was torn down first.
            asyncio.TimeoutError: ``timeout`` elapsed first.
        """
        if status not in CLOSE_STATUSES:
            raise ValueError(f"Unknown close status: {status!r}")
        if status in self.history:
            return
        if not self._alive:
            raise asyncio.CancelledError()
        fut = asyncio.get_running_loop().create_future()
        self._waiters.setdefault(status, []).append(fut)
        await asyncio.wait_for(fut, timeout)

    # ---------------------------
    # Transitions
    # ---------------------------

    def _apply(self, event: str) -> bool:
        if not self._alive:
            _logger.debug(f"Ignoring '{event}': flow was torn down")
            return False
        nxt = transition(self.status, event)
        if nxt is None:
            _logger.debug(f"Ignoring '{event}' in state '{self.status}'")
            return False
        old, self.status = self.status, nxt
        self.history.append(nxt)
        _logger.info(f"Close flow {old} -> {nxt}")

        # iterate a copy: listeners may unregister themselves
        for listener in list(self._listeners):
            listener(old, nxt)
        for fut in self._waiters.pop(nxt, []):
            if not fut.done():
                fut.set_result(None)
        return True

    async def start(self, submit: Optional[Callable[[], Awaitable[None]]] = None) -> None:
        """
        Request the bill.

        Returns once the request has been sent (state ``waiting``); the waiter
        response and bill delivery then follow on a background task.
        ``submit`` is awaited during ``requesting``; if it raises, the flow
        returns to ``idle`` and the error propagates to the caller.

        Raises:
            CloseFlowInProgress: the flow is not idle.
        """
        if not self._alive:
            raise RuntimeError("Close flow was torn down.")
        if self.status != "idle":
            raise CloseFlowInProgress()

        self.error = None
        self._apply("request")
        try:
            await self._sleep(self.settings.requesting_delay)
            if submit is not None:
                await submit()
        except Exception as exc:
            self.error = str(exc)
            _logger.warning(f"Bill request failed: {exc}")
            self._apply("failed")
            raise

        if self._apply("submitted"):
            self._task = asyncio.create_task(self._await_waiter())
            self._task.add_done_callback(self._log_task_failure)

    @staticmethod
    def _log_task_failure(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _logger.error(f"Close flow stopped: {exc!r}", exc_info=exc)

    async def _await_waiter(self) -> None:
        low = self.settings.waiter_response_min
        high = self.settings.waiter_response_max
        await self._sleep(self._rng.uniform(low, high))
        if not self._alive or self.status != "waiting":
            return

        self.waiter_name = self._rng.choice(self.settings.waiter_names)
        self.estimated_minutes = self._rng.randint(*self.settings.estimated_minutes)
        if not self._apply("accepted"):
            return

        await self._sleep(self.settings.bill_delivery_delay)
        self._apply("delivered")

    def confirm_payment(self) -> bool:
        """Mark the bill paid. Only has an effect in ``bill_ready``."""
        return self._apply("pay")

    def teardown(self) -> None:
        """Cancel pending timers; no transition is applied afterwards."""
        if not self._alive:
            return
        self._alive = False
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        for futures in self._waiters.values():
            for fut in futures:
                if not fut.done():
                    fut.cancel()
        self._waiters.clear()
        self._listeners.clear()
        _logger.debug(f"Close flow torn down in state '{self.status}'")
