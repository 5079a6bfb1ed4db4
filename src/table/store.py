"""
The table session store.

``TableStore`` owns this device's view of the ``TableSession`` aggregate.
Mutations run one at a time (``_mutate``): each one first adopts the
session as last written to the shared storage, so rounds and joins made on
other devices are never overwritten, then derives the next session from
that and writes it back. Selectors are plain synchronous reads.

One store instance represents one device. The session record lives in the
shared ``storage``; the device binding lives in ``device_storage``, which
defaults to the same substrate.
"""

from __future__ import annotations

import asyncio
import math
import random
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

from db import crud
from db.models import (
    ORDER_PROGRESSION,
    PAYMENT_METHODS,
    SPLIT_METHODS,
    AddToCartInput,
    AuthIdentity,
    CartItem,
    CloseFlowSnapshot,
    DeviceBinding,
    Diner,
    OrderRecord,
    TablePayment,
    TableSession,
    cart_total_cents,
    parse_iso,
    to_iso,
    utc_now,
)
from db.storage import MemoryStorage, Storage
from table import validators
from table.catalog import RESTAURANT_ID, Catalog
from table.close_flow import CloseTableFlow
from table.errors import (
    EmptyCartError,
    NoActiveSessionError,
    NothingToCloseError,
    PendingCartError,
    PersistenceError,
    SessionClosedError,
    TableError,
    UnknownProductError,
    ValidationError,
)
from table.payments import billable_orders, compute_shares, total_consumed_cents
from utils import messages
from utils.config import Settings
from utils.ids import FALLBACK_COLOR, DinerColorRegistry, color_for_index, generate_id
from utils.logger import get_logger
from utils.pure import MAX_PRICE, from_cents, is_valid_price
from utils.retry import with_retry

_logger = get_logger(__name__)

Listener = Callable[[Optional[TableSession]], None]
BillRequester = Callable[[TableSession], Awaitable[None]]
WaiterCaller = Callable[[str], Awaitable[None]]

# Timestamp field stamped when a round reaches each kitchen stage.
_STATUS_STAMPS: Dict[str, str] = {
    "confirmed": "confirmed_at",
    "ready": "ready_at",
    "delivered": "delivered_at",
}


class TableStore:
    def __init__(
        self,
        storage: Optional[Storage] = None,
        device_storage: Optional[Storage] = None,
        settings: Optional[Settings] = None,
        translate: Optional[messages.Translate] = None,
        table_validator: Optional[validators.TableValidator] = None,
        catalog: Optional[Catalog] = None,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        rng: Optional[random.Random] = None,
        bill_requester: Optional[BillRequester] = None,
        waiter_caller: Optional[WaiterCaller] = None,
        retry_attempts: int = 3,
        retry_base_delay: float = 0.2,
    ) -> None:
        self.storage = storage if storage is not None else MemoryStorage()
        self.device_storage = device_storage if device_storage is not None else self.storage
        self.settings = settings or Settings()
        self.translate = translate or messages.default_translate
        self.catalog = catalog or Catalog()
        self._table_validator = table_validator
        self._clock = clock or utc_now
        self._sleep = sleep or asyncio.sleep
        self._rng = rng or random.Random()
        self._bill_requester = bill_requester
        self._waiter_caller = waiter_caller
        self._retry_attempts = retry_attempts
        self._retry_base_delay = retry_base_delay

        self._session: Optional[TableSession] = None
        self._diner_id: Optional[str] = None
        self._colors = DinerColorRegistry()
        self._listeners: List[Listener] = []
        self._flow = self._new_flow()

        self._write_lock = asyncio.Lock()
        # set while the last write failed and memory is ahead of storage
        self._unsaved = False

    # ---------------------------
    # Internals
    # ---------------------------

    def _new_flow(self) -> CloseTableFlow:
        return CloseTableFlow(self.settings, sleep=self._sleep, rng=self._rng)

    def _reset_flow(self) -> None:
        self._flow.teardown()
        self._flow = self._new_flow()

    def _now_iso(self) -> str:
        return to_iso(self._clock())

    def _is_expired(self, session: TableSession) -> bool:
        expires = parse_iso(session.created_at) + timedelta(hours=self.settings.session_ttl_hours)
        return self._clock() > expires

    def _drop_session(self) -> None:
        self._reset_flow()
        self._session = None
        self._diner_id = None
        self._colors.reset()

    def _current(self) -> Optional[TableSession]:
        session = self._session
        if session is not None and self._is_expired(session):
            _logger.info(f"Session {session.id} expired, dropping it")
            self._drop_session()
            self._notify()
            return None
        return session

    def _require_session(self) -> TableSession:
        session = self._current()
        if session is None:
            raise NoActiveSessionError()
        return session

    def _require_open_session(self) -> TableSession:
        session = self._require_session()
        if session.is_closed:
            raise SessionClosedError()
        return session

    def _require_current_diner(self) -> Diner:
        session = self._require_open_session()
        diner = session.find_diner(self._diner_id) if self._diner_id else None
        if diner is None:
            raise NoActiveSessionError()
        return diner

    def _notify(self) -> None:
        session = self._session
        for listener in list(self._listeners):
            listener(session)

    async def _refresh(self) -> None:
        """Adopt the stored copy of the current session.

        Other devices write to the same record; their joins, rounds and
        payment must be the base of the next change made here. Skipped while
        this device holds changes its last write failed to store.
        """
        if self._session is None or self._unsaved:
            return
        try:
            stored = await crud.load_session(self.storage, self._clock())
        except PersistenceError as exc:
            _logger.error(f"Could not read stored session: {exc}")
            return
        session = self._session
        if stored is None or session is None or stored.id != session.id:
            return
        if self._diner_id is not None and stored.find_diner(self._diner_id) is None:
            return
        latest = stored.with_current_user(self._diner_id) if self._diner_id else stored
        if latest == session:
            return
        self._session = latest
        self._colors.sync(d.id for d in latest.diners)
        self._notify()

    async def _save(self) -> None:
        session = self._session
        if session is None:
            return
        try:
            await crud.save_session(self.storage, session, self.settings.session_ttl_hours)
        except PersistenceError as exc:
            # in-memory state stays authoritative for this device
            self._unsaved = True
            _logger.error(f"Could not persist session {session.id}: {exc}")
        else:
            self._unsaved = False

    async def _mutate(
        self, apply: Callable[[TableSession], TableSession], open_only: bool = True
    ) -> TableSession:
        """Replace the session with ``apply(latest session)``, notify and persist.

        Mutations are serialised. ``apply`` returning its argument unchanged
        means there is nothing to write.
        """
        async with self._write_lock:
            await self._refresh()
            current = self._require_open_session() if open_only else self._require_session()
            updated = apply(current)
            if updated is current:
                return current
            self._session = updated
            self._notify()
            await self._save()
            return updated

    async def _persist_binding(self) -> None:
        if self._session is None or self._diner_id is None:
            return
        try:
            await crud.save_binding(
                self.device_storage,
                DeviceBinding(session_id=self._session.id, diner_id=self._diner_id),
            )
        except PersistenceError as exc:
            _logger.error(f"Could not persist device binding: {exc}")

    async def _load_stored(self) -> Optional[TableSession]:
        try:
            session = await crud.load_session(self.storage, self._clock())
        except PersistenceError as exc:
            _logger.error(f"Could not load stored session: {exc}")
            return None
        if session is not None and self._is_expired(session):
            return None
        return session

    def _bind(self, session: TableSession, diner_id: str) -> TableSession:
        if self._session is not None and self._session.id != session.id:
            self._reset_flow()
            self._colors.reset()
        bound = session.with_current_user(diner_id)
        self._session = bound
        self._diner_id = diner_id
        self._colors.sync(d.id for d in bound.diners)
        self._notify()
        return bound

    # ---------------------------
    # Lifecycle
    # ---------------------------

    async def load(self) -> Optional[TableSession]:
        """Rehydrate the session this device is bound to, if any."""
        session = await self._load_stored()
        if session is None:
            return None
        try:
            binding = await crud.load_binding(self.device_storage)
        except PersistenceError as exc:
            _logger.error(f"Could not load device binding: {exc}")
            return None
        if binding is None or binding.session_id != session.id:
            return None
        if session.find_diner(binding.diner_id) is None:
            return None
        _logger.info(f"Rehydrated session {session.id} for table {session.table_number}")
        return self._bind(session, binding.diner_id)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener(session)`` after every change; returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def teardown(self) -> None:
        """Cancel any pending close-flow timers."""
        self._flow.teardown()

    # ---------------------------
    # Session & diners
    # ---------------------------

    def _match_diner(
        self, session: TableSession, name: str, auth: Optional[AuthIdentity]
    ) -> Optional[Diner]:
        if auth is not None:
            return next((d for d in session.diners if d.user_id == auth.user_id), None)
        wanted = name.casefold()
        if self._diner_id:
            bound = session.find_diner(self._diner_id)
            if bound is not None and bound.name.casefold() == wanted:
                return bound
        return next(
            (d for d in session.diners if d.user_id is None and d.name.casefold() == wanted),
            None,
        )

    async def create_or_join_session(
        self, table_number: str, diner_name: str, auth: Optional[AuthIdentity] = None
    ) -> TableSession:
        """
        Join the active session of ``table_number`` as ``diner_name``.

        A new session is started when there is no live, open session for that
        table. Joining again with the same identity returns the same session
        and diner.

        Raises:
            InvalidTableNumber: the table number fails validation.
            ValidationError: the diner name is empty or too long.
        """
        table = validators.validate_table_number(table_number, self._table_validator)
        name = validators.validate_diner_name(diner_name)

        async with self._write_lock:
            await self._refresh()
            session = await self._join(table, name, auth)
            await self._save()
        await self._persist_binding()
        return session

    async def _join(
        self, table: str, name: str, auth: Optional[AuthIdentity]
    ) -> TableSession:
        stored = None if self._current() is not None else await self._load_stored()
        if self._diner_id is None and stored is not None:
            try:
                binding = await crud.load_binding(self.device_storage)
            except PersistenceError as exc:
                _logger.error(f"Could not load device binding: {exc}")
                binding = None
            if binding is not None and binding.session_id == stored.id:
                self._diner_id = binding.diner_id

        # re-read after the awaits above
        candidate = self._current() or stored
        if candidate is None or candidate.table_number != table or candidate.is_closed:
            candidate = TableSession(
                id=generate_id("ses-"),
                table_number=table,
                status="active",
                created_at=self._now_iso(),
                restaurant_id=RESTAURANT_ID,
            )
            self._diner_id = None
            _logger.info(f"Started session {candidate.id} for table {table}")

        diner = self._match_diner(candidate, name, auth)
        if diner is None:
            diner = Diner(
                id=generate_id("din-"),
                name=name,
                avatar_color=color_for_index(len(candidate.diners)),
                joined_at=self._now_iso(),
                user_id=auth.user_id if auth else None,
                email=auth.email if auth else None,
                picture=auth.picture if auth else None,
            )
            candidate = replace(candidate, diners=candidate.diners + (diner,))
            _logger.info(f"{name} joined table {table}")

        return self._bind(candidate, diner.id)

    def add_diner_color(self, diner_id: str) -> str:
        return self._colors.add(diner_id)

    def get_diner_color(self, diner_id: str) -> str:
        color = self._colors.get(diner_id)
        if color is not None:
            return color
        session = self._current()
        if session is not None and session.find_diner(diner_id) is not None:
            self._colors.sync(d.id for d in session.diners)
            return self._colors.get(diner_id) or FALLBACK_COLOR
        return FALLBACK_COLOR

    async def leave_table(self) -> None:
        """Unbind this device. The session record stays for the other diners."""
        session = self._session
        self._drop_session()
        self._notify()
        if session is not None:
            _logger.info(f"Left table {session.table_number}")
        try:
            await crud.clear_binding(self.device_storage)
        except PersistenceError as exc:
            _logger.error(f"Could not clear device binding: {exc}")

    # ---------------------------
    # Cart
    # ---------------------------

    async def add_to_cart(self, data: AddToCartInput) -> CartItem:
        """
        Add an item to the shared cart on behalf of the current diner.

        Raises:
            ValidationError: price not positive and finite, quantity not an
                int in [1, 99], or notes too long.
            NoActiveSessionError: this device has not joined a table.
            SessionClosedError: the table is closed.
        """
        if not is_valid_price(data.price):
            raise ValidationError(key=messages.INVALID_PRICE, max=MAX_PRICE)
        quantity = validators.validate_quantity(data.quantity)
        notes = validators.validate_notes(data.notes)
        diner = self._require_current_diner()

        item = CartItem(
            id=generate_id("itm-"),
            product_id=str(data.product_id),
            name=data.name,
            price=float(data.price),
            image=data.image or "",
            quantity=quantity,
            diner_id=diner.id,
            diner_name=diner.name,
            notes=notes,
        )
        await self._mutate(lambda s: replace(s, shared_cart=s.shared_cart + (item,)))
        _logger.debug(f"{diner.name} added {quantity} x {item.name}")
        return item

    async def add_product_to_cart(
        self, product_id: str, quantity: Optional[int] = None, notes: Optional[str] = None
    ) -> CartItem:
        product = self.catalog.get_product(product_id)
        if product is None:
            raise UnknownProductError(product_id=product_id)
        return await self.add_to_cart(
            AddToCartInput(
                product_id=product.id,
                name=product.name,
                price=product.price,
                image=product.image,
                quantity=quantity,
                notes=notes,
            )
        )

    async def remove_from_cart(self, item_id: str) -> None:
        def apply(current: TableSession) -> TableSession:
            if not any(item.id == item_id for item in current.shared_cart):
                return current
            return replace(
                current, shared_cart=tuple(i for i in current.shared_cart if i.id != item_id)
            )

        await self._mutate(apply)

    async def update_cart_item_quantity(self, item_id: str, quantity: int) -> None:
        """Set an item's quantity, clamped to [1, 99]. Unknown ids are ignored."""
        if (
            isinstance(quantity, bool)
            or not isinstance(quantity, (int, float))
            or not math.isfinite(quantity)
        ):
            raise ValidationError(
                key=messages.INVALID_QUANTITY,
                min=validators.MIN_QUANTITY,
                max=validators.MAX_QUANTITY,
            )
        qty = validators.clamp_quantity(quantity)

        def apply(current: TableSession) -> TableSession:
            if not any(item.id == item_id for item in current.shared_cart):
                return current
            return replace(
                current,
                shared_cart=tuple(
                    replace(i, quantity=qty) if i.id == item_id else i
                    for i in current.shared_cart
                ),
            )

        await self._mutate(apply)

    async def clear_cart(self) -> None:
        await self._mutate(lambda s: replace(s, shared_cart=()) if s.shared_cart else s)

    # ---------------------------
    # Rounds
    # ---------------------------

    async def submit_order(self) -> OrderRecord:
        """
        Send the shared cart to the kitchen as the next round.

        Raises:
            EmptyCartError: nothing in the cart; history is left untouched.
            SessionClosedError: the table is closed.
        """
        diner = self._require_current_diner()
        submitted: List[OrderRecord] = []

        def apply(current: TableSession) -> TableSession:
            if not current.shared_cart:
                raise EmptyCartError()
            record = OrderRecord(
                id=generate_id("ord-"),
                round_number=current.current_round + 1,
                items=current.shared_cart,
                subtotal=from_cents(cart_total_cents(current.shared_cart)),
                status="submitted",
                submitted_by=diner.id,
                submitted_by_name=diner.name,
                submitted_at=self._now_iso(),
            )
            submitted.append(record)
            return replace(current, shared_cart=(), orders=current.orders + (record,))

        await self._mutate(apply)
        record = submitted[0]
        _logger.info(
            f"Round {record.round_number} submitted by {diner.name}: "
            f"{len(record.items)} items, {record.subtotal:.2f}"
        )
        return record

    async def update_order_status(self, order_id: str, status: str) -> Optional[OrderRecord]:
        """
        Move a round forward through the kitchen lifecycle.

        Unknown order ids are ignored (returns None).

        Raises:
            ValidationError: ``status`` is not a later kitchen stage.
        """
        if status not in ORDER_PROGRESSION:
            raise ValidationError(key=messages.INVALID_ORDER_STATUS, current="?", status=status)
        updated: List[OrderRecord] = []
        now = self._now_iso()

        def apply(current: TableSession) -> TableSession:
            orders = []
            for order in current.orders:
                if order.id == order_id:
                    order = self._advance(order, status, now)
                    updated.append(order)
                orders.append(order)
            if not updated:
                return current
            return replace(current, orders=tuple(orders))

        await self._mutate(apply)
        return updated[0] if updated else None

    @staticmethod
    def _advance(order: OrderRecord, status: str, now: str) -> OrderRecord:
        if order.status not in ORDER_PROGRESSION:
            raise ValidationError(
                key=messages.INVALID_ORDER_STATUS, current=order.status, status=status
            )
        start = ORDER_PROGRESSION.index(order.status)
        target = ORDER_PROGRESSION.index(status)
        if target <= start:
            raise ValidationError(
                key=messages.INVALID_ORDER_STATUS, current=order.status, status=status
            )
        stamps = {}
        for stage in ORDER_PROGRESSION[start + 1 : target + 1]:
            field_name = _STATUS_STAMPS.get(stage)
            if field_name and getattr(order, field_name) is None:
                stamps[field_name] = now
        return replace(order, status=status, **stamps)

    # ---------------------------
    # Closing the table
    # ---------------------------

    async def _request_bill(self) -> None:
        if self._bill_requester is None:
            return

        async def attempt() -> None:
            await self._bill_requester(self._require_session())

        await with_retry(
            attempt,
            max_attempts=self._retry_attempts,
            base_delay=self._retry_base_delay,
            sleep=self._sleep,
        )

    async def close_table(self) -> None:
        """
        Ask for the bill.

        Returns once the request is out; the flow then proceeds on its own
        (see ``get_close_status``).

        Raises:
            PendingCartError: the shared cart still has items.
            NothingToCloseError: no rounds were ordered.
            CloseFlowInProgress: the bill was already requested.
        """
        async with self._write_lock:
            await self._refresh()
        session = self._require_open_session()
        if session.shared_cart:
            raise PendingCartError(count=len(session.shared_cart))
        if not billable_orders(session.orders):
            raise NothingToCloseError()
        _logger.info(f"Requesting the bill for table {session.table_number}")
        await self._flow.start(submit=self._request_bill)

    async def confirm_payment(
        self, method: str = "card", split_method: str = "by_consumption"
    ) -> Optional[TablePayment]:
        """
        Settle the bill once it has been delivered.

        Before ``bill_ready`` this does nothing and returns None. Otherwise
        every billable round is marked paid, the session is closed, and the
        settled payment is returned.

        Raises:
            ValidationError: unknown payment or split method. Nothing is
                changed, so the payment can be confirmed again.
        """
        if method not in PAYMENT_METHODS:
            raise ValidationError(key=messages.INVALID_PAYMENT_METHOD, method=method)
        if split_method not in SPLIT_METHODS:
            raise ValidationError(key=messages.INVALID_SPLIT_METHOD, split_method=split_method)
        if self._current() is None or self._flow.status != "bill_ready":
            return None
        now = self._now_iso()
        settled: List[TablePayment] = []

        def apply(current: TableSession) -> TableSession:
            shares = tuple(
                replace(share, paid=True, paid_at=now, method=method)
                for share in compute_shares(split_method, current.diners, current.orders)
            )
            payment = TablePayment(
                table_session_id=current.id,
                total_amount=from_cents(total_consumed_cents(current.orders)),
                split_method=split_method,
                shares=shares,
                completed=True,
                completed_at=now,
            )
            if not self._flow.confirm_payment():
                return current
            settled.append(payment)
            orders = tuple(o if o.is_cancelled else replace(o, status="paid") for o in current.orders)
            return replace(current, orders=orders, status="closed")

        session = await self._mutate(apply, open_only=False)
        if not settled:
            return None
        _logger.info(f"Table {session.table_number} paid by {method}")
        return settled[0]

    async def call_waiter(self) -> None:
        """Ping the waiter for this table (simulated network call, retried)."""
        session = self._require_session()

        async def attempt() -> None:
            await self._sleep(self.settings.call_waiter_delay)
            if self._waiter_caller is not None:
                await self._waiter_caller(session.table_number)

        await with_retry(
            attempt,
            max_attempts=self._retry_attempts,
            base_delay=self._retry_base_delay,
            sleep=self._sleep,
        )
        _logger.info(f"Waiter called to table {session.table_number}")

    # ---------------------------
    # Selectors
    # ---------------------------

    @property
    def flow(self) -> CloseTableFlow:
        return self._flow

    def get_session(self) -> Optional[TableSession]:
        return self._current()

    def get_current_diner(self) -> Optional[Diner]:
        session = self._current()
        if session is None or self._diner_id is None:
            return None
        return session.find_diner(self._diner_id)

    def get_cart(self) -> Sequence[CartItem]:
        session = self._current()
        return session.shared_cart if session else ()

    def get_cart_total(self) -> float:
        return from_cents(cart_total_cents(self.get_cart()))

    def get_order_history(self) -> Sequence[OrderRecord]:
        session = self._current()
        return session.orders if session else ()

    def get_total_consumed(self) -> float:
        return from_cents(total_consumed_cents(self.get_order_history()))

    def get_current_round(self) -> int:
        session = self._current()
        return session.current_round if session else 0

    def get_payment_shares(
        self, split_method: str = "by_consumption", custom_amounts: Optional[Mapping[str, float]] = None
    ):
        session = self._current()
        if session is None:
            return []
        return compute_shares(split_method, session.diners, session.orders, custom_amounts)

    def get_close_status(self) -> CloseFlowSnapshot:
        return self._flow.snapshot()

    def describe_close_status(self) -> str:
        """Caption for the close-table screen in the current flow state."""
        snapshot = self._flow.snapshot()
        return self.translate(
            messages.CLOSE_STATUS[snapshot.status],
            waiter=snapshot.waiter_name,
            minutes=snapshot.estimated_minutes,
        )

    def message_for(self, error: BaseException) -> str:
        """User-facing text for an error raised by one of the actions."""
        if isinstance(error, TableError):
            return self.translate(error.key, **error.params)
        return self.translate("errors.generic")
