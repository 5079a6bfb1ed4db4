# provide dataclass models for the table session aggregate

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional, Tuple

from utils.pure import from_cents, line_cents, sum_cents

SessionStatus = Literal["active", "closed"]
OrderStatus = Literal[
    "submitted", "confirmed", "preparing", "ready", "delivered", "paid", "cancelled"
]
PaymentMethod = Literal["cash", "card", "transfer", "mixed"]
SplitMethod = Literal["equal", "by_consumption", "custom"]

# Kitchen lifecycle of a round, in order. "paid" and "cancelled" are terminal
# and only reachable through the close-table flow.
ORDER_PROGRESSION: Tuple[str, ...] = (
    "submitted",
    "confirmed",
    "preparing",
    "ready",
    "delivered",
)
SPLIT_METHODS: Tuple[str, ...] = ("equal", "by_consumption", "custom")
PAYMENT_METHODS: Tuple[str, ...] = ("cash", "card", "transfer", "mixed")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(when: datetime) -> str:
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return when.isoformat()


def parse_iso(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class AuthIdentity:
    user_id: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    picture: Optional[str] = None


@dataclass(frozen=True)
class Product:
    id: str
    name: str
    description: str
    price: float
    image: str
    category_id: str
    subcategory_id: str = ""
    featured: bool = False
    popular: bool = False
    badge: Optional[str] = None
    allergens: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Diner:
    id: str
    name: str
    avatar_color: str
    joined_at: str
    is_current_user: bool = False
    user_id: Optional[str] = None
    email: Optional[str] = None
    picture: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Diner":
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            avatar_color=str(data.get("avatar_color", "")),
            joined_at=str(data["joined_at"]),
            is_current_user=bool(data.get("is_current_user", False)),
            user_id=data.get("user_id"),
            email=data.get("email"),
            picture=data.get("picture"),
        )


@dataclass(frozen=True)
class AddToCartInput:
    product_id: str
    name: str
    price: float
    image: str = ""
    quantity: Optional[int] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class CartItem:
    id: str
    product_id: str
    name: str
    price: float
    image: str
    quantity: int
    diner_id: str
    diner_name: str
    notes: Optional[str] = None

    @property
    def subtotal_cents(self) -> int:
        return line_cents(self.price, self.quantity)

    @property
    def subtotal(self) -> float:
        return from_cents(self.subtotal_cents)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CartItem":
        return cls(
            id=str(data["id"]),
            product_id=str(data["product_id"]),
            name=str(data["name"]),
            price=float(data["price"]),
            image=str(data.get("image", "")),
            quantity=int(data["quantity"]),
            diner_id=str(data["diner_id"]),
            diner_name=str(data["diner_name"]),
            notes=data.get("notes"),
        )


def cart_total_cents(items) -> int:
    return sum_cents(item.subtotal_cents for item in items)


@dataclass(frozen=True)
class OrderRecord:
    """One submitted round. ``items`` is a snapshot and is never edited."""

    id: str
    round_number: int
    items: Tuple[CartItem, ...]
    subtotal: float
    status: OrderStatus
    submitted_by: str
    submitted_by_name: str
    submitted_at: str
    confirmed_at: Optional[str] = None
    ready_at: Optional[str] = None
    delivered_at: Optional[str] = None

    @property
    def subtotal_cents(self) -> int:
        return cart_total_cents(self.items)

    @property
    def is_cancelled(self) -> bool:
        return self.status == "cancelled"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["items"] = [item.to_dict() for item in self.items]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OrderRecord":
        items = tuple(CartItem.from_dict(item) for item in data.get("items", []))
        return cls(
            id=str(data["id"]),
            round_number=int(data["round_number"]),
            items=items,
            subtotal=float(data.get("subtotal", from_cents(cart_total_cents(items)))),
            status=data.get("status", "submitted"),
            submitted_by=str(data["submitted_by"]),
            submitted_by_name=str(data.get("submitted_by_name", "")),
            submitted_at=str(data["submitted_at"]),
            confirmed_at=data.get("confirmed_at"),
            ready_at=data.get("ready_at"),
            delivered_at=data.get("delivered_at"),
        )


@dataclass(frozen=True)
class TableSession:
    id: str
    table_number: str
    status: SessionStatus
    created_at: str
    restaurant_id: str = ""
    table_name: Optional[str] = None
    diners: Tuple[Diner, ...] = ()
    shared_cart: Tuple[CartItem, ...] = ()
    orders: Tuple[OrderRecord, ...] = ()

    @property
    def is_closed(self) -> bool:
        return self.status == "closed"

    @property
    def current_round(self) -> int:
        return max((order.round_number for order in self.orders), default=0)

    def find_diner(self, diner_id: str) -> Optional[Diner]:
        return next((d for d in self.diners if d.id == diner_id), None)

    def with_current_user(self, diner_id: Optional[str]) -> "TableSession":
        """Copy with ``is_current_user`` set on ``diner_id`` only."""
        diners = tuple(
            d if d.is_current_user == (d.id == diner_id)
            else replace(d, is_current_user=(d.id == diner_id))
            for d in self.diners
        )
        return replace(self, diners=diners)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "table_number": self.table_number,
            "table_name": self.table_name,
            "restaurant_id": self.restaurant_id,
            "status": self.status,
            "created_at": self.created_at,
            "diners": [d.to_dict() for d in self.diners],
            "shared_cart": [item.to_dict() for item in self.shared_cart],
            "orders": [order.to_dict() for order in self.orders],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TableSession":
        return cls(
            id=str(data["id"]),
            table_number=str(data["table_number"]),
            table_name=data.get("table_name"),
            restaurant_id=str(data.get("restaurant_id", "")),
            status=data.get("status", "active"),
            created_at=str(data["created_at"]),
            diners=tuple(Diner.from_dict(d) for d in data.get("diners", [])),
            shared_cart=tuple(CartItem.from_dict(i) for i in data.get("shared_cart", [])),
            orders=tuple(OrderRecord.from_dict(o) for o in data.get("orders", [])),
        )


@dataclass(frozen=True)
class PaymentShare:
    diner_id: str
    diner_name: str
    amount: float
    paid: bool = False
    paid_at: Optional[str] = None
    method: Optional[PaymentMethod] = None


@dataclass(frozen=True)
class TablePayment:
    table_session_id: str
    total_amount: float
    split_method: SplitMethod
    shares: Tuple[PaymentShare, ...]
    completed: bool = False
    completed_at: Optional[str] = None


@dataclass(frozen=True)
class TableSessionRecord:
    """The persisted envelope around a session."""

    session: TableSession
    created_at: str
    expires_at: str

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or utc_now()
        return now > parse_iso(self.expires_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session": self.session.to_dict(),
            "created_at": self.created_at,
            "expires_at": self.expires_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TableSessionRecord":
        return cls(
            session=TableSession.from_dict(data["session"]),
            created_at=str(data["created_at"]),
            expires_at=str(data["expires_at"]),
        )


@dataclass(frozen=True)
class DeviceBinding:
    """Which session and diner this device belongs to."""

    session_id: str
    diner_id: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeviceBinding":
        return cls(session_id=str(data["session_id"]), diner_id=str(data["diner_id"]))


@dataclass(frozen=True)
class CloseFlowSnapshot:
    """Read-only view of the close-table flow for the presentation layer."""

    status: str
    waiter_name: str = ""
    estimated_minutes: int = 0
    error: Optional[str] = None
    history: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_processing(self) -> bool:
        return self.status in ("requesting", "waiting", "waiter_coming", "bill_ready")
